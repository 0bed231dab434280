from .market import Section, Stall, Store, Owner, Contract, Attendance
from .payments import Transaction, ClickTransaction, ContractPaymentPeriod

__all__ = [
    'Section', 'Stall', 'Store', 'Owner', 'Contract', 'Attendance',
    'Transaction', 'ClickTransaction', 'ContractPaymentPeriod',
]
