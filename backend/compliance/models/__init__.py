from .auth import Region, User, Client, Delegation, DelegateAssignment
from .inventory import StickerLot, StockHolding, StockTransfer, StockRequest, StickerUsage
from .tags import Tag
from .jobs import JobOrder, Payment, Certificate, DocumentSequence
from .sync import OfflineJobOrder, SyncState
from .activity import ActivityLog, ChangeEvent, Notification

__all__ = [
    'Region', 'User', 'Client', 'Delegation', 'DelegateAssignment',
    'StickerLot', 'StockHolding', 'StockTransfer', 'StockRequest', 'StickerUsage',
    'Tag',
    'JobOrder', 'Payment', 'Certificate', 'DocumentSequence',
    'OfflineJobOrder', 'SyncState',
    'ActivityLog', 'ChangeEvent', 'Notification',
]
