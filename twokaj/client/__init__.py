"""
Device-side offline-first stack: local store, operation queue, sync engine,
connectivity monitoring and background trigger.
"""
from twokaj.client.api_client import ApiClient
from twokaj.client.background import SYNC_REQUIRED, BackgroundTrigger, SyncChannel
from twokaj.client.connectivity import ConnectivityMonitor, SyncSignal
from twokaj.client.local_store import LocalStore
from twokaj.client.operations import DeadLetter, Operation, OperationKind, new_id
from twokaj.client.refresh import RefreshMerge
from twokaj.client.session import MarketplaceClient, WriteResult
from twokaj.client.sync_engine import SyncEngine, SyncReport

__all__ = [
    "ApiClient",
    "BackgroundTrigger",
    "ConnectivityMonitor",
    "DeadLetter",
    "LocalStore",
    "MarketplaceClient",
    "Operation",
    "OperationKind",
    "RefreshMerge",
    "SYNC_REQUIRED",
    "SyncChannel",
    "SyncEngine",
    "SyncReport",
    "SyncSignal",
    "WriteResult",
    "new_id",
]
