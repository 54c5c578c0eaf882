from .auth import User, RevokedToken
from .customers import Client, Vehicle
from .inventory import InventoryCategory, InventoryItem, LaborService, InventoryTransaction
from .documents import (
    DocumentSequence,
    WorkOrder,
    WorkOrderItem,
    WorkOrderService,
    Budget,
    BudgetItem,
)
from .billing import Invoice, InvoiceItem, Payment
from .settings import SystemParameter

__all__ = [
    'User', 'RevokedToken',
    'Client', 'Vehicle',
    'InventoryCategory', 'InventoryItem', 'LaborService', 'InventoryTransaction',
    'DocumentSequence', 'WorkOrder', 'WorkOrderItem', 'WorkOrderService',
    'Budget', 'BudgetItem',
    'Invoice', 'InvoiceItem', 'Payment',
    'SystemParameter',
]
