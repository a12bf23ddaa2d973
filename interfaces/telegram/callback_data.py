from __future__ import annotations

BLACKJACK_ACTIONS = ("hit", "stand")


def encode_gift_choice(sender_id: str, recipient_id: str, amount: int) -> str:
    """
    Encode a "choose recipient" callback.

    Format: gift:{sender_chat_id}:{recipient_chat_id}:{amount}
    """

    return f"gift:{sender_id}:{recipient_id}:{amount}"


def parse_gift_choice(data: str) -> tuple[str, str, int]:
    parts = data.split(":")
    if len(parts) != 4 or parts[0] != "gift":
        raise ValueError(f"Invalid gift callback data: {data}")

    sender_id = parts[1]
    recipient_id = parts[2]
    amount = int(parts[3])
    return sender_id, recipient_id, amount


def encode_blackjack_action(action: str) -> str:
    """
    Encode a blackjack button press.

    Format: bj:{hit|stand}
    """

    if action not in BLACKJACK_ACTIONS:
        raise ValueError(f"Unknown blackjack action: {action}")
    return f"bj:{action}"


def parse_blackjack_action(data: str) -> str:
    parts = data.split(":")
    if len(parts) != 2 or parts[0] != "bj" or parts[1] not in BLACKJACK_ACTIONS:
        raise ValueError(f"Invalid blackjack callback data: {data}")
    return parts[1]
