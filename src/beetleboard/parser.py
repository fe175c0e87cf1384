from __future__ import annotations

from typing import Any

from beetleboard.models import StatRecord


def _non_negative_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        number = int(value)
    except (TypeError, ValueError):
        try:
            number = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0
    return max(number, 0)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_profile_payload(payload: Any, username: str) -> StatRecord | None:
    """Normalize a ``/profile/~{username}`` body, or ``None`` if it has no user object."""
    if not isinstance(payload, dict):
        return None
    user = payload.get("user")
    if not isinstance(user, dict):
        return None

    social_credit = user.get("socialCredit")
    if isinstance(social_credit, dict):
        social_credit = social_credit.get("score")

    resolved = _text(user.get("username")) or username
    return StatRecord(
        username=resolved,
        display_name=_text(user.get("displayName")) or resolved,
        pfp_url=_text(user.get("pfpUrl")),
        beetles=_non_negative_int(user.get("beetles")),
        pokes=_non_negative_int(user.get("pokes")),
        social_credit=_non_negative_int(social_credit),
    )


def parse_friends_page(payload: Any) -> tuple[list[str], int] | None:
    """Usernames on one ``/friends`` page plus the raw entry count.

    The raw count decides whether the page was the last one; entries without
    a ``displayUsername`` are dropped from the names but still counted.
    Returns ``None`` for a malformed body.
    """
    if not isinstance(payload, dict):
        return None
    friends = payload.get("friends")
    if not isinstance(friends, list):
        return None

    usernames: list[str] = []
    for entry in friends:
        if not isinstance(entry, dict):
            continue
        name = _text(entry.get("displayUsername"))
        if name:
            usernames.append(name)
    return usernames, len(friends)
