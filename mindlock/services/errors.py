"""Error taxonomy for purchase validation."""
from __future__ import annotations


class PurchaseValidationError(RuntimeError):
    """Base class for purchase validation errors."""


class RetryableGatewayError(PurchaseValidationError):
    """Raised when Apple could not give a definitive answer; the job should be redelivered."""


class TerminalValidationError(PurchaseValidationError):
    """Raised when the purchase proof is definitively invalid; the purchase is failed."""


__all__ = ["PurchaseValidationError", "RetryableGatewayError", "TerminalValidationError"]
