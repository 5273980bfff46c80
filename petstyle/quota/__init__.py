"""Daily quota ledger."""

from .ledger import (
    LimitExceededError,
    QuotaCheckError,
    QuotaConflictError,
    QuotaError,
    QuotaLedger,
    QuotaSnapshot,
    effective_used,
    utc_today,
)

__all__ = [
    "LimitExceededError",
    "QuotaCheckError",
    "QuotaConflictError",
    "QuotaError",
    "QuotaLedger",
    "QuotaSnapshot",
    "effective_used",
    "utc_today",
]
