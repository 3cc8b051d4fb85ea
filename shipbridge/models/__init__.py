from shipbridge.models.order import Order, OrderStatus
from shipbridge.models.quotation import Quotation
from shipbridge.models.shipment import Shipment, label_file_name
from shipbridge.models.error_log import ErrorLogEntry

__all__ = [
    "Order",
    "OrderStatus",
    "Quotation",
    "Shipment",
    "label_file_name",
    "ErrorLogEntry",
]
