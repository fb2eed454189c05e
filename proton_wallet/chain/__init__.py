"""
Chain access: RPC/history client, ABI and asset types, keys, transactions.
"""

from proton_wallet.chain.abi import Abi, Asset
from proton_wallet.chain.client import ChainApi, ChainClient
from proton_wallet.chain.keys import PrivateKey
from proton_wallet.chain.transaction import (
    Action,
    PermissionLevel,
    PushResult,
    SignedTransaction,
    Transaction,
    TransactionSigner,
)

__all__ = [
    "Abi",
    "Action",
    "Asset",
    "ChainApi",
    "ChainClient",
    "PermissionLevel",
    "PrivateKey",
    "PushResult",
    "SignedTransaction",
    "Transaction",
    "TransactionSigner",
]
