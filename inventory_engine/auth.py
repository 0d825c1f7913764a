from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    LEAD = "LEAD"
    STORE = "STORE"


@dataclass
class Principal:
    id: int
    role: Role
    store_id: str | None


def get_current_principal(request: Request) -> Principal:
    # Identity is established upstream and forwarded as headers.
    raw_user_id = request.headers.get("x-user-id")
    raw_role = request.headers.get("x-user-role")
    if not raw_user_id or not raw_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    try:
        user_id = int(raw_user_id)
        role = Role(raw_role.strip().upper())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED) from exc
    store_id = (request.headers.get("x-store-id") or "").strip() or None
    return Principal(id=user_id, role=role, store_id=store_id)


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def assert_store_scope(principal: Principal, target_store_id: str) -> None:
    if principal.role != Role.STORE:
        return
    if principal.store_id != target_store_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
