import uuid
from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, Header, HTTPException

from .clients import CallContext


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str


def get_correlation_id(x_correlation_id: Optional[str] = Header(None)):
    return x_correlation_id or str(uuid.uuid4())


def get_call_context(
    cid: str = Depends(get_correlation_id),
    authorization: Optional[str] = Header(None),
) -> CallContext:
    # the caller's bearer credential is forwarded to collaborators as-is
    return CallContext(correlation_id=cid, authorization=authorization)


def get_current_user(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
    cid: str = Depends(get_correlation_id),
) -> Identity:
    """Identity as forwarded by the gateway after it verified the token."""
    if x_user_id is None:
        raise HTTPException(401, {"code": "UNAUTHORIZED", "message": "Unauthorized", "correlationId": cid})
    return Identity(user_id=x_user_id, role=(x_user_role or "customer").lower())


def require_driver(
    user: Identity = Depends(get_current_user),
    cid: str = Depends(get_correlation_id),
) -> Identity:
    if user.role != "driver":
        raise HTTPException(403, {"code": "DRIVER_ONLY", "message": "Driver access required", "correlationId": cid})
    return user
