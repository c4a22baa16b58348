from __future__ import annotations


class LedgerError(Exception):
    """Base exception for all ledger-service errors."""

    code = "ledger_error"

    def __init__(self, message: str = "", **details: object) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.details = details


class InsufficientFundsError(LedgerError):
    """Balance would drop below its floor after the adjustment."""

    code = "insufficient_funds"


class InsufficientPointsError(LedgerError):
    """Account does not hold enough points for the prize."""

    code = "insufficient_points"


class OutOfStockError(LedgerError):
    """Prize stock is exhausted."""

    code = "out_of_stock"


class DuplicateRequestError(LedgerError):
    """A pending redemption already exists for this account and prize."""

    code = "duplicate_request"


class PrizeUnavailableError(LedgerError):
    """Prize is missing, unpublished, inactive or out of stock."""

    code = "prize_unavailable"


class InvalidStateTransitionError(LedgerError):
    """Requested status change is not allowed from the current state."""

    code = "invalid_state_transition"


class StoreUnavailableError(LedgerError):
    """Backing store could not complete the operation."""

    code = "store_unavailable"


class AccountNotFoundError(LedgerError):
    """Account does not exist."""

    code = "account_not_found"


class RedemptionNotFoundError(LedgerError):
    """Redemption request does not exist."""

    code = "redemption_not_found"


class DepositNotFoundError(LedgerError):
    """Deposit request does not exist."""

    code = "deposit_not_found"


class InvalidAmountError(LedgerError):
    """Amount is outside the accepted range."""

    code = "invalid_amount"


class UnsupportedPaymentMethodError(LedgerError):
    """Payment method is not accepted for deposits."""

    code = "unsupported_payment_method"
