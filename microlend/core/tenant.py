from __future__ import annotations

import re
from uuid import UUID


TENANT_ID_MIN_LENGTH = 2
TENANT_ID_MAX_LENGTH = 64
_TENANT_ID_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def normalize_tenant_id(value: str) -> str:
    cleaned = value.strip().lower()
    if len(cleaned) < TENANT_ID_MIN_LENGTH or len(cleaned) > TENANT_ID_MAX_LENGTH:
        raise ValueError(
            f"tenant_id must be between {TENANT_ID_MIN_LENGTH} and {TENANT_ID_MAX_LENGTH} characters"
        )
    if not _TENANT_ID_RE.fullmatch(cleaned):
        raise ValueError("tenant_id may only contain lowercase letters, numbers, '-' and '_'")
    return cleaned


def is_valid_tenant_id(value: str | None) -> bool:
    if not value:
        return False
    try:
        normalize_tenant_id(value)
    except ValueError:
        return False
    return True


def parse_branch_id(value: str | None) -> UUID | None:
    if value is None or not value.strip():
        return None
    try:
        return UUID(value.strip())
    except ValueError as exc:
        raise ValueError("X-Branch-ID must be a UUID") from exc
