"""
Launchpad Pipeline - Error Taxonomy.

============================================================
PURPOSE
============================================================
Exception hierarchy for the price & trade pipeline.

ERROR KINDS:
1. NetworkError - Ledger or cache unreachable / timed out
2. CacheError - Cache store failure (a NetworkError)
3. NormalizationError - Single malformed ledger log entry
4. NotFoundError - Cache miss (treated as empty, never fatal)
5. ConfigurationError - Missing address / selector / parameter

RECOVERY:
- Absorbed locally: CacheError, NotFoundError, NormalizationError
- Retried by the poller: NetworkError from the ledger
- Surfaced: NetworkError after retries are exhausted,
  ConfigurationError always

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(
        self,
        message: str,
        pool_address: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.pool_address = pool_address
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    @property
    def is_retryable(self) -> bool:
        """Whether retrying the same call may succeed."""
        return False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "pool_address": self.pool_address,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.pool_address:
            parts.append(f"[pool={self.pool_address}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class NetworkError(PipelineError):
    """Ledger or cache unreachable, timed out, or returned an error."""

    def __init__(
        self,
        message: str,
        pool_address: Optional[str] = None,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
        timed_out: bool = False,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, pool_address, original_error, context)
        self.method = method
        self.status_code = status_code
        self.timed_out = timed_out

    @property
    def is_retryable(self) -> bool:
        # Client errors will fail again
        if self.status_code is not None and 400 <= self.status_code < 500:
            return self.status_code == 429
        return True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "method": self.method,
            "status_code": self.status_code,
            "timed_out": self.timed_out,
        })
        return data


class CacheError(NetworkError):
    """Cache store read or write failed."""

    def __init__(
        self,
        message: str,
        pool_address: Optional[str] = None,
        operation: str = "read",  # read, write
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            pool_address=pool_address,
            method=f"cache.{operation}",
            original_error=original_error,
            context=context,
        )
        self.operation = operation

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["operation"] = self.operation
        return data


class NormalizationError(PipelineError):
    """A raw log entry could not be decoded into a trade record."""

    def __init__(
        self,
        message: str,
        pool_address: Optional[str] = None,
        tx_hash: Optional[str] = None,
        field_name: Optional[str] = None,
        raw_data: Optional[Any] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, pool_address, original_error, context)
        self.tx_hash = tx_hash
        self.field_name = field_name
        self.raw_data = raw_data

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "tx_hash": self.tx_hash,
            "field_name": self.field_name,
            "raw_data": str(self.raw_data)[:500] if self.raw_data else None,
        })
        return data


class NotFoundError(PipelineError):
    """Requested entry is absent from the cache."""

    def __init__(
        self,
        message: str,
        pool_address: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, pool_address, original_error, context)
        self.key = key


class ConfigurationError(PipelineError):
    """Required address, selector or parameter is missing or invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, original_error, context)
        self.config_key = config_key

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data
