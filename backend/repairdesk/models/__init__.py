from .auth import User, Role, UserRole, Client, ClientSession
from .security import SecurityEvent
from .orders import (
    OrderState, ProformaStatus, STATE_NAMES,
    OrderStatus, Equipment, ServiceOrder, OrderStatusHistory,
)
from .invoices import InvoiceSequence, Invoice, INVOICE_STATUS_GENERATED, INVOICE_STATUS_SENT
from .tickets import Ticket, TicketResponse, TICKET_PRIORITIES, TICKET_STATUSES

__all__ = [
    'User', 'Role', 'UserRole', 'Client', 'ClientSession',
    'SecurityEvent',
    'OrderState', 'ProformaStatus', 'STATE_NAMES',
    'OrderStatus', 'Equipment', 'ServiceOrder', 'OrderStatusHistory',
    'InvoiceSequence', 'Invoice', 'INVOICE_STATUS_GENERATED', 'INVOICE_STATUS_SENT',
    'Ticket', 'TicketResponse', 'TICKET_PRIORITIES', 'TICKET_STATUSES',
]
