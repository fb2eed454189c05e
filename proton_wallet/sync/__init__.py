"""
Sync: merge engine and the account sync pipeline.
"""

from proton_wallet.sync.merge import merge, merge_accounts, merge_token_contracts, merge_transfer_actions
from proton_wallet.sync.orchestrator import SyncOrchestrator

__all__ = ["SyncOrchestrator", "merge", "merge_accounts", "merge_token_contracts", "merge_transfer_actions"]
