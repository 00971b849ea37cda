from __future__ import annotations

from .errors import FormatError
from .models import RelayDescriptor


def parse_relay(value: str) -> RelayDescriptor:
    """
    Parse `host:port` or `host:port:user:pass` into a `RelayDescriptor`.

    Raises `FormatError` for anything else, including a non-numeric port.
    """

    if not isinstance(value, str) or not value.strip():
        raise FormatError("Relay string is required")

    parts = value.strip().split(":")
    if len(parts) not in (2, 4) or not all(parts):
        raise FormatError(
            "Invalid relay format. Expected host:port or host:port:username:password",
            details=value,
        )

    try:
        port = int(parts[1])
    except ValueError:
        raise FormatError(f"Invalid relay port: {parts[1]}", details=value) from None

    if not 0 < port < 65536:
        raise FormatError(f"Relay port out of range: {port}", details=value)

    if len(parts) == 2:
        return RelayDescriptor(host=parts[0], port=port)
    return RelayDescriptor(host=parts[0], port=port, username=parts[2], password=parts[3])
