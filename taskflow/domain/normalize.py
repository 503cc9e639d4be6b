from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import UTC, datetime

_WORD_RE = re.compile(r"[^\W_][^\s]*", re.UNICODE)
_SPLIT_RE = re.compile(r"[,:;|]")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_CODE_RE = re.compile(r"^[A-Z0-9]+(?:-[A-Z0-9]+)*$")


def title_case(value: str | None) -> str | None:
    if value is None:
        return None
    return _WORD_RE.sub(lambda match: match.group(0)[:1].upper() + match.group(0)[1:].lower(), value)


def split_values(raw: str | Iterable[str] | None) -> list[str]:
    if raw is None:
        return []
    chunks = _SPLIT_RE.split(raw) if isinstance(raw, str) else [str(item) for item in raw]
    return [item.strip() for item in chunks if item and item.strip()]


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value))


def is_code_like(value: str) -> bool:
    return bool(_CODE_RE.match(value)) and any(char.isdigit() for char in value)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_stamp(value: datetime) -> str:
    """Millisecond-precision UTC ISO string, the storage form of timestamp lists."""
    return ensure_utc(value).isoformat(timespec="milliseconds")


def merge_stamps(existing: Iterable[str] | None, *new: datetime | str) -> list[str]:
    stamps: set[str] = set()
    for item in [*(existing or []), *new]:
        if isinstance(item, datetime):
            stamps.add(to_stamp(item))
        elif item:
            stamps.add(to_stamp(datetime.fromisoformat(item)))
    return sorted(stamps, key=datetime.fromisoformat)


def merge_documents(existing: str | None, new: Iterable[str]) -> str | None:
    docs = split_documents(existing)
    for item in new:
        for part in split_documents(item):
            if part not in docs:
                docs.append(part)
    return ",".join(docs) if docs else None


def split_documents(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]
