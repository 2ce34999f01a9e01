from dataclasses import dataclass

import jwt
from fastapi import Depends, Header, HTTPException, Request, status

from sla_engine.models.base import UserRole
from sla_engine.services import auth_service
from sla_engine.tasks.sla_scheduler import SlaScheduler


@dataclass
class CurrentUser:
    subject: str
    role: UserRole


async def get_current_user(authorization: str | None = Header(None)) -> CurrentUser:
    """Identify the caller from a bearer JWT issued by the helpdesk."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    token = authorization[7:]
    try:
        payload = auth_service.decode_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")
    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role")
    return CurrentUser(subject=str(payload.get("sub")), role=role)


def require_role(*roles: UserRole):
    """Dependency factory that checks if the current user has one of the required roles."""
    async def role_checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {current_user.role.value} not authorized. Required: {[r.value for r in roles]}"
            )
        return current_user
    return role_checker


def get_scheduler(request: Request) -> SlaScheduler:
    return request.app.state.sla_scheduler
