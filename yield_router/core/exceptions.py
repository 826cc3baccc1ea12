"""
Custom exceptions for Yield Router.

Exception hierarchy:
    RouterError (base)
    ├── ConfigurationError
    │   ├── UnsupportedTokenError
    │   ├── NoStrategiesError
    │   ├── DuplicateError
    │   ├── RouteNotFoundError
    │   └── NewValueIsAboveMaxBpsError
    ├── PriceError
    │   ├── PriceNotFoundError
    │   ├── StalePriceError
    │   └── InvalidPriceError
    ├── ExchangeError
    │   ├── SwapFailedError
    │   └── PriceManipulationError
    ├── InvariantError
    │   ├── ReceiptAmountCannotIncreaseError
    │   ├── InvalidRangeError
    │   ├── NothingToRebalanceError
    │   ├── CycleNotClosableYetError
    │   ├── DepositUnderMinimumError
    │   ├── FeeUnderpaidError
    │   ├── InsufficientSharesError
    │   ├── AmountNotSpecifiedError
    │   ├── SlippageExceededError
    │   ├── AllWithdrawalsFulfilledError
    │   ├── CycleNotClosedError
    │   └── ...
    ├── AuthorizationError
    │   ├── NotAdminError
    │   ├── NotModeratorError
    │   ├── NotOperatorError
    │   └── NotReceiptOwnerError
    └── InsufficientBalanceError
"""

from typing import Any


class RouterError(Exception):
    """Base exception for all yield router errors."""

    default_message = "Yield router error occurred"
    default_code: str | None = None

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.append(f"[{self.code}]")
        if self.details:
            parts.append(f"Details: {self.details}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r})"
        )


# Configuration errors
class ConfigurationError(RouterError):
    """Invalid configuration or unsupported setup."""

    default_message = "Configuration error"


class UnsupportedTokenError(ConfigurationError):
    default_message = "Token is not supported"
    default_code = "UnsupportedToken"


class NoStrategiesError(ConfigurationError):
    default_message = "No strategies registered"
    default_code = "NoStrategies"


class DuplicateError(ConfigurationError):
    """Duplicate registration of a strategy or token."""

    default_message = "Already registered"
    default_code = "AlreadyAdded"


class RouteNotFoundError(ConfigurationError):
    default_message = "No route configured for token pair"
    default_code = "RouteNotFound"


class NewValueIsAboveMaxBpsError(ConfigurationError):
    default_message = "Value exceeds maximum basis points"
    default_code = "NewValueIsAboveMaxBps"


# Price errors
class PriceError(RouterError):
    """Base exception for oracle price errors."""

    default_message = "Price error"


class PriceNotFoundError(PriceError):
    default_message = "No price available for token"
    default_code = "PriceNotFound"


class StalePriceError(PriceError):
    default_message = "Oracle price is stale"
    default_code = "StalePrice"


class InvalidPriceError(PriceError):
    default_message = "Oracle price is not positive"
    default_code = "InvalidPrice"


# Exchange errors
class ExchangeError(RouterError):
    """Base exception for swap routing errors."""

    default_message = "Exchange error"


class SwapFailedError(ExchangeError):
    default_message = "Swap returned zero output"
    default_code = "RoutedSwapFailed"


class PriceManipulationError(ExchangeError):
    """Realized swap output deviates from the oracle-implied output."""

    default_message = "Swap output deviates from oracle price beyond threshold"

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        expected: Any = None,
        received: Any = None,
    ):
        super().__init__(message, code, details)
        self.expected = expected
        self.received = received


# Invariant errors
class InvariantError(RouterError):
    """An operation would break an accounting invariant."""

    default_message = "Invariant violated"


class ReceiptAmountCannotIncreaseError(InvariantError):
    default_message = "Receipt amount can only decrease"
    default_code = "ReceiptAmountCanOnlyDecrease"


class InvalidRangeError(InvariantError):
    default_message = "Query range is invalid (start >= stop)"
    default_code = "StartIndexShouldBeLessThanStopIndex"


class NothingToRebalanceError(InvariantError):
    default_message = "Fewer than two allocation targets, nothing to rebalance"
    default_code = "NothingToRebalance"


class CycleNotClosableYetError(InvariantError):
    default_message = "Cycle cannot be closed yet"
    default_code = "CycleNotClosableYet"


class DepositUnderMinimumError(InvariantError):
    default_message = "Deposit is under the minimum"
    default_code = "DepositUnderMinimum"


class FeeUnderpaidError(InvariantError):
    default_message = "Fee paid is below the required fee"
    default_code = "DepositFeeNotPaid"


class InsufficientSharesError(InvariantError):
    default_message = "Not enough shares"
    default_code = "InsufficientShares"


class AmountNotSpecifiedError(InvariantError):
    default_message = "Neither receipts nor shares specified"
    default_code = "AmountNotSpecified"


class AmountExceedsBalanceError(InvariantError):
    default_message = "Amount exceeds receipt balance"
    default_code = "AmountExceedsBalance"


class SlippageExceededError(InvariantError):
    default_message = "Received amount is below the required minimum"
    default_code = "WithdrawnAmountLowerThanExpectedAmount"


class AllWithdrawalsFulfilledError(InvariantError):
    default_message = "Withdrawal cycle already fulfilled"
    default_code = "AllWithdrawalsFulfilled"


class CycleClosedError(InvariantError):
    default_message = "Receipt cycle is already closed"
    default_code = "CycleClosed"


class CycleNotClosedError(InvariantError):
    default_message = "Receipt cycle has not been allocated yet"
    default_code = "CycleNotClosed"


class StrategyNotEmptyError(InvariantError):
    default_message = "Strategy still holds funds"
    default_code = "CannotRemoveStrategyWithFunds"


class NotFoundError(InvariantError):
    default_message = "Entity not found"
    default_code = "NotFound"


# Authorization errors
class AuthorizationError(RouterError):
    """Caller lacks the required role."""

    default_message = "Not authorized"


class NotAdminError(AuthorizationError):
    default_message = "Caller is not an admin"
    default_code = "NotAdmin"


class NotModeratorError(AuthorizationError):
    default_message = "Caller is not a moderator"
    default_code = "NotModerator"


class NotOperatorError(AuthorizationError):
    default_message = "Caller is not an operator"
    default_code = "NotOperator"


class NotReceiptOwnerError(AuthorizationError):
    default_message = "Caller does not own the receipt"
    default_code = "NotReceiptOwner"


# Balances
class InsufficientBalanceError(RouterError):
    """Insufficient ledger balance for a transfer or burn."""

    default_message = "Insufficient balance"
    default_code = "InsufficientBalance"
