"""Room identifiers.

A room is either a literal broadcast topic (e.g. "general") or the
canonical id of a two-party private conversation:

    private_<lower id>_<higher id>

The participant ids are sorted lexicographically, so the id is the same
whichever participant computes it. User ids never contain "_".
"""
from typing import Optional, Tuple

PRIVATE_ROOM_PREFIX = "private_"


def private_room_id(user_a: str, user_b: str) -> str:
    """Canonical room id for the unordered pair ``{user_a, user_b}``."""
    first, second = sorted((user_a, user_b))
    return f"{PRIVATE_ROOM_PREFIX}{first}_{second}"


def is_private_room(room: str) -> bool:
    return room.startswith(PRIVATE_ROOM_PREFIX)


def private_room_participants(room: str) -> Optional[Tuple[str, str]]:
    """Inverse of :func:`private_room_id`; None if ``room`` is not canonical."""
    if not is_private_room(room):
        return None
    parts = room[len(PRIVATE_ROOM_PREFIX):].split("_")
    if len(parts) != 2 or not all(parts):
        return None
    if private_room_id(parts[0], parts[1]) != room:
        return None
    return parts[0], parts[1]


def is_participant(room: str, user_id: str) -> bool:
    participants = private_room_participants(room)
    return participants is not None and user_id in participants
