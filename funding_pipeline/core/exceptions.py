"""
Custom exception classes for the funding pipeline.
Provides structured error handling across all modules.

``retryable`` tells the reward processor whether a failed payout may go back
through the queue's retry path.
"""

from decimal import Decimal
from typing import Any, Optional, Dict


class FundingPipelineException(Exception):
    """Base exception class for the funding pipeline."""

    retryable = False

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(FundingPipelineException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(FundingPipelineException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ValidationError(FundingPipelineException):
    """Raised when data validation fails."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "VALIDATION_ERROR"
    ):
        super().__init__(message, code, details)


class NotFoundError(FundingPipelineException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class RateLimitError(FundingPipelineException):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "RATE_LIMIT_ERROR", details)


class ExternalServiceError(FundingPipelineException):
    """Raised when an external service error occurs."""

    retryable = True

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "EXTERNAL_SERVICE_ERROR"
    ):
        super().__init__(message, code, details)


class ChainRPCError(ExternalServiceError):
    """Raised when a chain RPC node or explorer API call fails."""

    def __init__(self, chain: str, message: str):
        super().__init__(
            f"{chain} RPC error: {message}",
            {"chain": chain},
            code="CHAIN_RPC_ERROR"
        )


class PriceFeedError(ExternalServiceError):
    """Raised when no price can be obtained for a chain."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="PRICE_FEED_ERROR")


class RewardTransferError(ExternalServiceError):
    """Raised when gas estimation, submission or confirmation of a reward transfer fails."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "REWARD_TRANSFER_ERROR"
    ):
        super().__init__(message, details, code=code)


class RewardTransferPendingError(RewardTransferError):
    """Raised when a broadcast reward transfer has no receipt yet. It may still be mined."""

    retryable = False

    def __init__(self, tx_hash: str):
        super().__init__(
            f"Awaiting receipt for reward transfer {tx_hash}",
            {"tx_hash": tx_hash},
            code="REWARD_TRANSFER_PENDING"
        )
        self.tx_hash = tx_hash


class RewardTransferRevertedError(RewardTransferError):
    """Raised when a reward transfer was mined but reverted. No tokens moved."""

    def __init__(self, tx_hash: str):
        super().__init__(
            "Reward transfer reverted",
            {"tx_hash": tx_hash},
            code="REWARD_TRANSFER_REVERTED"
        )
        self.tx_hash = tx_hash


class InsufficientTreasuryBalanceError(FundingPipelineException):
    """Raised when the treasury cannot cover a reward. Needs an operator top-up."""

    retryable = True

    def __init__(self, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient treasury balance. Required: {required}, Available: {available}",
            "INSUFFICIENT_TREASURY_BALANCE",
            {"required": str(required), "available": str(available)}
        )


class InvalidStatusTransitionError(FundingPipelineException):
    """Raised when code asks for a funding status transition the lifecycle forbids."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Invalid funding status transition: {current} -> {target}",
            "INVALID_STATUS_TRANSITION",
            {"from": current, "to": target}
        )


# Validation exceptions
class UnsupportedChainError(ValidationError):
    """Raised when a chain is not supported."""

    def __init__(self, chain: str):
        super().__init__(
            f"Unsupported chain: {chain}",
            {"chain": chain},
            code="UNSUPPORTED_CHAIN"
        )


class InvalidAddressError(ValidationError):
    """Raised when an address does not match the expected chain format."""

    def __init__(self, address: str, chain: str):
        super().__init__(
            f"Invalid {chain} address: {address}",
            {"address": address, "chain": chain},
            code="INVALID_ADDRESS"
        )


class BelowMinimumFundingError(ValidationError):
    """Raised when a funding is worth less than the configured USD minimum."""

    def __init__(self, usd_value: Decimal, minimum: Decimal):
        super().__init__(
            f"Funding amount ${usd_value} is below minimum ${minimum}",
            {"usd_value": str(usd_value), "minimum": str(minimum)},
            code="BELOW_MINIMUM_FUNDING"
        )


class FundingNotFoundError(NotFoundError):
    """Raised when a funding record is not found."""

    def __init__(self, funding_id: str):
        super().__init__(
            f"Funding request not found: {funding_id}",
            {"funding_id": funding_id}
        )
