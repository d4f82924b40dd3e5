from __future__ import annotations


class LedgerError(Exception):
    """Base class for every expected, reportable ledger failure.

    Raising one of these never leaves partial state behind: the unit of work
    that raised it is rolled back before the error leaves the service layer.
    """

    code = "ledger_error"
    status_code = 400


class AccountNotFoundError(LedgerError):
    """Raised when an account number is missing from the store."""

    code = "account_not_found"
    status_code = 404


class ReferrerNotFoundError(LedgerError):
    """Raised when a registration or deposit names an unknown referrer."""

    code = "referrer_not_found"
    status_code = 404


class RequestNotFoundError(LedgerError):
    code = "request_not_found"
    status_code = 404


class ProductNotFoundError(LedgerError):
    code = "product_not_found"
    status_code = 404


class DuplicateContactError(LedgerError):
    """Raised when a username or mobile number is already registered."""

    code = "duplicate_contact"
    status_code = 409


class DuplicateTxHashError(LedgerError):
    """Raised when a deposit claim reuses a transaction hash."""

    code = "duplicate_tx_hash"
    status_code = 409


class PendingDepositExistsError(LedgerError):
    code = "pending_deposit_exists"
    status_code = 409


class InsufficientFundsError(LedgerError):
    """Raised when a debit would drop a balance below zero."""

    code = "insufficient_funds"
    status_code = 409


class AlreadyProcessedError(LedgerError):
    """Raised when a request has already left the pending state."""

    code = "already_processed"
    status_code = 409


class InvalidStateTransitionError(LedgerError):
    code = "invalid_state_transition"
    status_code = 409


class DuplicateIdempotencyKeyError(LedgerError):
    """Raised when the same idempotency key is reused with different input."""

    code = "duplicate_idempotency_key"
    status_code = 409


class ReferralCycleError(LedgerError):
    code = "referral_cycle"
    status_code = 409


class SelfTransferError(LedgerError):
    code = "self_transfer"
    status_code = 400


class InvalidAmountError(LedgerError):
    code = "invalid_amount"
    status_code = 400


class InvalidFieldError(LedgerError):
    """Raised when a required text field is blank after trimming."""

    code = "invalid_field"
    status_code = 400


class InvalidCredentialsError(LedgerError):
    code = "invalid_credentials"
    status_code = 401


class StorageUnavailableError(LedgerError):
    """Raised after a rollback when the store failed mid-operation. Safe to retry."""

    code = "storage_unavailable"
    status_code = 503
