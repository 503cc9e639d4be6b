from __future__ import annotations

from typing import Any

ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLE_ADMIN = "ADMIN"
ROLE_HR = "HR"
ROLE_MANAGER = "MANAGER"
ROLE_EMPLOYEE = "EMPLOYEE"

ADMIN_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})
PRIVILEGED_ROLES = ADMIN_ROLES | {ROLE_HR, ROLE_MANAGER}

DEFAULT_ROLE_NAMES = [
    ROLE_SUPER_ADMIN,
    ROLE_ADMIN,
    ROLE_HR,
    ROLE_MANAGER,
    ROLE_EMPLOYEE,
]


def normalize_role(role: str | None) -> str:
    if not role:
        return ""
    return "_".join(str(role).strip().split()).upper()


def is_admin_role(role: str | None) -> bool:
    return normalize_role(role) in ADMIN_ROLES


def is_privileged_role(role: str | None) -> bool:
    return normalize_role(role) in PRIVILEGED_ROLES


def claims_role(claims: dict[str, Any]) -> str:
    role = claims.get("role")
    return normalize_role(role if isinstance(role, str) else None)
