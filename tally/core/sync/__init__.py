"""Connection sync module.

Usage:
    from tally.core.sync import SyncEngine

    with get_db() as db:
        result = SyncEngine(db, registry, secrets).sync_connection(connection_id)
"""

from tally.core.sync.models import SyncResult
from tally.core.sync.engine import SyncEngine
from tally.core.sync.scheduler import SyncScheduler

__all__ = [
    "SyncResult",
    "SyncEngine",
    "SyncScheduler",
]
