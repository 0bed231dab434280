# Overview: Typed payment-rule failures raised by the ledger and mapped to gateway codes by adapters.

"""
Payment errors

WHY: Click and Payme report the same business failures with different
numeric codes. Services raise one vocabulary; each adapter owns the
mapping to its own wire codes.
"""

from __future__ import annotations


class PaymentError(Exception):
    """Base class for payment operation errors."""
    pass


class SignatureInvalid(PaymentError):
    pass


class AmountMismatch(PaymentError):
    def __init__(self, expected, received):
        self.expected = expected
        self.received = received
        super().__init__(f"Amount mismatch: expected {expected}, received {received}")


class AlreadyPaid(PaymentError):
    pass


class BillableNotFound(PaymentError):
    pass


class TransactionNotFound(PaymentError):
    pass


class DuplicateRequest(PaymentError):
    pass


class TransactionNotPending(PaymentError):
    """Transaction exists but is no longer PENDING (canceled, failed or expired)."""

    def __init__(self, transaction, message: str | None = None):
        self.transaction = transaction
        super().__init__(message or f"Transaction {transaction.external_reference} is {transaction.status}")
