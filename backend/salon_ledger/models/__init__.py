from .tenancy import Tenant
from .cash import CashSession, CashMovement, ReconciliationRecord
from .invoicing import Invoice, InvoiceLine, InvoicePayment
from .sequences import SequenceCounter

__all__ = [
    'Tenant',
    'CashSession', 'CashMovement', 'ReconciliationRecord',
    'Invoice', 'InvoiceLine', 'InvoicePayment',
    'SequenceCounter',
]
