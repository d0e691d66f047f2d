"""Caller identity handed over by the session layer in front of this service."""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

ADMIN_ROLE = "admin"
ACCOUNTANT_ROLE = "accountant"
STAFF_ROLES = {ADMIN_ROLE, ACCOUNTANT_ROLE}


@dataclass
class StaffContext:
    tenant_id: UUID
    profile_id: UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _parse_header_uuid(value: Optional[str], name: str) -> UUID:
    try:
        return UUID((value or "").strip())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Missing or invalid {name}")


def get_staff_context(
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-Id"),
    x_profile_id: Optional[str] = Header(default=None, alias="X-Profile-Id"),
    x_profile_role: Optional[str] = Header(default=None, alias="X-Profile-Role"),
) -> StaffContext:
    return StaffContext(
        tenant_id=_parse_header_uuid(x_tenant_id, "X-Tenant-Id"),
        profile_id=_parse_header_uuid(x_profile_id, "X-Profile-Id"),
        role=(x_profile_role or "").strip().lower(),
    )


def require_admin(context: StaffContext = Depends(get_staff_context)) -> StaffContext:
    if not context.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return context


def require_staff(context: StaffContext = Depends(get_staff_context)) -> StaffContext:
    if context.role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return context
