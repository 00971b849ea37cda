from __future__ import annotations

from typing import Any, Optional


class WagerError(Exception):
    """Base class for every failure raised by the placement and settlement core."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class FormatError(WagerError):
    """A relay string did not match `host:port` or `host:port:user:pass`."""


class RelayError(WagerError):
    """A relay failed its health probe."""


class RemoteCallError(WagerError):
    """
    A call to a remote platform failed.

    `status` is the HTTP status when the platform answered at all and
    `payload` is the decoded response body, if any.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        payload: Any = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, details if details is not None else payload)
        self.status = status
        self.payload = payload

    @classmethod
    def wrap(cls, error: "RemoteCallError", prefix: str) -> "RemoteCallError":
        return cls(
            f"{prefix}: {error.message}",
            status=error.status,
            payload=error.payload,
            details=error.details,
        )


class CredentialError(RemoteCallError):
    """Sign-in failed or returned no usable token."""


class OrderError(RemoteCallError):
    """The platform rejected an order, or the order failed validation."""


class ReconciliationError(RemoteCallError):
    """A ledger could not be fetched or interpreted."""
