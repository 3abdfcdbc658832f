from sync_engine.loaders.order_writer import OrderWriter, UpsertResult
from sync_engine.loaders.run_log import RunLog
from sync_engine.loaders.state_store import SyncStateStore

__all__ = ["OrderWriter", "UpsertResult", "RunLog", "SyncStateStore"]
