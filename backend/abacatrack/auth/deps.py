"""FastAPI dependencies for caller identity and role checks.

Dependencies:
  get_current_actor   → decode bearer JWT, return Actor(id, role)
  require_role(...)   → restrict to specific roles (admin always passes)
"""

import enum
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from abacatrack.auth.jwt import decode_token

# Token issuance lives in the external auth service
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class Role(str, enum.Enum):
    PROGRAM_OFFICER = "program_officer"
    ASSOCIATION_OFFICER = "association_officer"
    FARMER = "farmer"
    BUYER = "buyer"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role


# ── Core identity dependency ────────────────────────────────

async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type", "access") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role: {payload.get('role')}",
        )
    return Actor(id=user_id, role=role)


# ── Role-based access control ───────────────────────────────

def require_role(*roles: Role):
    """Dependency factory — restrict to one or more roles.

    Usage:
        @router.post("/allocations")
        async def create(actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER))):
            ...
    """
    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role != Role.ADMIN and actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(r.value for r in roles)}",
            )
        return actor

    return _check
