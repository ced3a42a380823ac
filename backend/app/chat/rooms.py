"""Deterministic room naming for pairwise conversations.

A conversation between two users has no stored entity. Its room id is derived
from the unordered pair of participants, so both sides compute the same token
independently:

    room_id("alice", "bob") == room_id("bob", "alice") == "alice-bob"

The delimiter is reserved: user ids containing it are rejected, otherwise
``participants_of`` could not split the token unambiguously.
"""
from typing import Optional, Tuple

ROOM_DELIMITER = "-"


class ChatError(Exception):
    """Base class for chat routing errors."""


class InvalidUserIdError(ChatError):
    """Raised for empty user ids or ids containing the room delimiter."""


class InvalidRoomIdError(ChatError):
    """Raised when a room id does not split into exactly two participants."""


def validate_user_id(user_id: Optional[str]) -> str:
    if not isinstance(user_id, str) or not user_id:
        raise InvalidUserIdError(f"User id must be a non-empty string, got {user_id!r}")
    if ROOM_DELIMITER in user_id:
        raise InvalidUserIdError(
            f"User id {user_id!r} contains the reserved delimiter {ROOM_DELIMITER!r}"
        )
    return user_id


def room_id(user_a: str, user_b: str) -> str:
    """Return the canonical room id for the pair (order-insensitive)."""
    first, second = sorted((validate_user_id(user_a), validate_user_id(user_b)))
    return f"{first}{ROOM_DELIMITER}{second}"


def participants_of(room: str) -> Tuple[str, str]:
    """Split a room id back into its two participants (sorted order)."""
    if not isinstance(room, str):
        raise InvalidRoomIdError(f"Room id must be a string, got {room!r}")
    parts = room.split(ROOM_DELIMITER)
    if len(parts) != 2 or not all(parts):
        raise InvalidRoomIdError(f"Malformed room id: {room!r}")
    return parts[0], parts[1]


def counterpart(room: str, user_id: str) -> str:
    """Return the participant of ``room`` that is not ``user_id``.

    If ``user_id`` is not a participant, the first participant is returned,
    matching how the receiver is derived for a sender outside the pair.
    """
    first, second = participants_of(room)
    return second if first == user_id else first
