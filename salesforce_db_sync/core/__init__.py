"""同步核心模块"""

from .sync_service import SyncService
from .schema_reconciler import SchemaReconciler
from .bulk_export import BulkExport
from .inbound import InboundSyncEngine, InboundResult
from .outbound import OutboundSyncEngine, OutboundResult

__all__ = [
    "SyncService", "SchemaReconciler", "BulkExport",
    "InboundSyncEngine", "InboundResult", "OutboundSyncEngine", "OutboundResult"
]
