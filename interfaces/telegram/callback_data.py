from __future__ import annotations


def encode_bet_confirmation(pending_id: str, accepted: bool) -> str:
    """
    Encode a place/cancel callback for a previewed bet.

    Format:
      bet:yes:{pending_id}
      bet:no:{pending_id}
    """

    prefix = "yes" if accepted else "no"
    return f"bet:{prefix}:{pending_id}"


def parse_bet_confirmation(data: str) -> tuple[bool, str]:
    parts = data.split(":")
    if len(parts) != 3 or parts[0] != "bet" or parts[1] not in ("yes", "no"):
        raise ValueError(f"Invalid bet confirmation callback data: {data}")

    return parts[1] == "yes", parts[2]


def encode_history_page(page: int) -> str:
    """Format: hist:{page}"""

    return f"hist:{page}"


def parse_history_page(data: str) -> int:
    parts = data.split(":")
    if len(parts) != 2 or parts[0] != "hist":
        raise ValueError(f"Invalid history page callback data: {data}")

    page = int(parts[1])
    if page < 1:
        raise ValueError(f"Invalid history page callback data: {data}")
    return page
