from .channels import SalesChannel, ChannelStaff, ChannelLog, ReturnShipment, DocumentSequence
from .stock import (
    StockRequest,
    Allocation,
    Shipment,
    Receiving,
    ReceivingLine,
    ChannelStock,
    StockMovement,
    CloseOutEntry,
)
from .sales import Sale, SaleLine, SaleAdjustment

__all__ = [
    'SalesChannel', 'ChannelStaff', 'ChannelLog', 'ReturnShipment', 'DocumentSequence',
    'StockRequest', 'Allocation', 'Shipment', 'Receiving', 'ReceivingLine',
    'ChannelStock', 'StockMovement', 'CloseOutEntry',
    'Sale', 'SaleLine', 'SaleAdjustment',
]
