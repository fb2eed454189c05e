# Operation scheduling: sequential and concurrent lanes, fan-out join.

from proton_wallet.scheduler.engine import (
    FanOutJoin,
    Lane,
    OperationScheduler,
    Result,
)

__all__ = [
    "FanOutJoin",
    "Lane",
    "OperationScheduler",
    "Result",
]
