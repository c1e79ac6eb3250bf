from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import get_db
from .models import Membership, Role
from .settings import settings


ROLE_ORDER: dict[Role, int] = {
    Role.OWNER: 4,
    Role.ADMIN: 3,
    Role.MEMBER: 2,
    Role.AGENT: 1,
}


@dataclass(frozen=True)
class RequestContext:
    current_user_id: uuid.UUID
    current_org_id: uuid.UUID
    current_role: Role

    @property
    def actor_id(self) -> str:
        """User id as recorded on events and manual runs."""
        return str(self.current_user_id)

    def has_role(self, minimum_role: Role) -> bool:
        return ROLE_ORDER[self.current_role] >= ROLE_ORDER[minimum_role]


def org_scoped(stmt: Any, org_id: uuid.UUID, model: Any) -> Any:
    return stmt.where(getattr(model, "org_id") == org_id)


def require_role(context: RequestContext, minimum_role: Role) -> None:
    if not context.has_role(minimum_role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient role")


def _parse_role(value: str) -> Role:
    try:
        return Role(value)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid role header") from exc


def _parse_identity(user_header: str | None, org_header: str | None) -> tuple[uuid.UUID, uuid.UUID]:
    if not user_header or not org_header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing auth context headers")
    try:
        return uuid.UUID(user_header), uuid.UUID(org_header)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid auth context headers") from exc


def _effective_role(membership_role: Role, requested: str | None) -> Role:
    # A requested role can narrow the membership role for one request, never widen it.
    if not requested:
        return membership_role
    role = _parse_role(requested)
    if ROLE_ORDER[role] > ROLE_ORDER[membership_role]:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="role exceeds membership")
    return role


def get_request_context(
    db: Session = Depends(get_db),
    x_autoflow_user_id: str | None = Header(default=None),
    x_autoflow_org_id: str | None = Header(default=None),
    x_autoflow_role: str | None = Header(default=None),
) -> RequestContext:
    if settings.dev_auth_bypass:
        return RequestContext(
            current_user_id=uuid.UUID(settings.dev_user_id),
            current_org_id=uuid.UUID(settings.dev_org_id),
            current_role=_parse_role(settings.dev_role),
        )

    user_id, org_id = _parse_identity(x_autoflow_user_id, x_autoflow_org_id)
    membership = db.scalar(
        select(Membership).where(
            Membership.org_id == org_id,
            Membership.user_id == user_id,
            Membership.deleted_at.is_(None),
        )
    )
    if membership is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="org membership required")

    return RequestContext(
        current_user_id=user_id,
        current_org_id=org_id,
        current_role=_effective_role(membership.role, x_autoflow_role),
    )
