from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

SORT_ALIASES = {
    "beetles": "beetles",
    "pokes": "pokes",
    "credit": "socialCredit",
    "socialcredit": "socialCredit",
}

_SYNC_RE = re.compile(r"^sync(?:\s+(status|help|passes\s+(\d{1,2})))?$")
_TOP_RE = re.compile(r"^top(?:\s+(\d{1,5}))?(?:\s+(beetles|pokes|credit|socialcredit))?$")
_WHO_RE = re.compile(r"^who\s+~?(\S+)$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class BotCommand:
    name: str
    action: str = "run"
    page: int = 1
    sort_by: str = "beetles"
    passes: int = 1
    username: str = ""


def _normalize(raw_text: str) -> str:
    # Full-width forms and zero-width characters come from some chat clients.
    normalized = unicodedata.normalize("NFKC", raw_text)
    for ch in ("\u200b", "\u200c", "\u200d", "\ufeff"):
        normalized = normalized.replace(ch, "")
    return re.sub(r"\s+", " ", normalized).strip()


def parse_bot_command(raw_text: str) -> BotCommand | None:
    text = _normalize(raw_text)
    if not text.startswith("/"):
        return None
    body = text[1:].strip()
    lowered = body.lower()

    if lowered in {"h", "help"}:
        return BotCommand(name="help")
    if lowered == "flush":
        return BotCommand(name="flush")

    m = _SYNC_RE.match(lowered)
    if m:
        if m.group(2):
            passes = int(m.group(2))
            if passes < 1:
                return None
            return BotCommand(name="sync", action="passes", passes=passes)
        return BotCommand(name="sync", action=m.group(1) or "run")

    m = _TOP_RE.match(lowered)
    if m:
        page = int(m.group(1)) if m.group(1) else 1
        if page < 1:
            return None
        return BotCommand(name="top", page=page, sort_by=SORT_ALIASES[m.group(2) or "beetles"])

    # Usernames keep their case for display; lookups are case-insensitive.
    m = _WHO_RE.match(body)
    if m:
        return BotCommand(name="who", username=m.group(1))

    return None
