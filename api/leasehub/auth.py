from typing import List, Optional
from fastapi import Depends, Header, HTTPException, Query, status
from itsdangerous import BadSignature
from pydantic import BaseModel

from .models import Contract
from .utils import read_token

LANDLORD_SIDE_ROLES = ("landlord", "staff", "admin")


class AccessContext(BaseModel):
    role: str
    account_id: int
    building_ids: List[int] = []

    @property
    def actor(self) -> str:
        return f"{self.role}:{self.account_id}"


def resolve_access_context(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    token: Optional[str] = Query(default=None),
) -> AccessContext:
    candidate = x_access_token or token
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    try:
        data = read_token(candidate)
        return AccessContext(
            role=data["role"],
            account_id=int(data["account_id"]),
            building_ids=[int(b) for b in data.get("building_ids") or []],
        )
    except (BadSignature, KeyError, TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")


def require_landlord_side(context: AccessContext = Depends(resolve_access_context)) -> AccessContext:
    if context.role not in LANDLORD_SIDE_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Landlord access required")
    return context


def require_tenant(context: AccessContext = Depends(resolve_access_context)) -> AccessContext:
    if context.role != "resident":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant access required")
    return context


def can_manage_building(actor: AccessContext, landlord_id: int, building_id: int) -> bool:
    if actor.role == "admin":
        return True
    if actor.role == "landlord":
        return landlord_id == actor.account_id
    if actor.role == "staff":
        return building_id in actor.building_ids
    return False


def can_act_on_contract(actor: AccessContext, contract: Contract) -> bool:
    if actor.role == "resident":
        return contract.tenant_id == actor.account_id
    return can_manage_building(actor, contract.landlord_id, contract.building_id)
