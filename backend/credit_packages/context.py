# backend/credit_packages/context.py
"""
Request context.

Authentication happens upstream: the gateway resolves the caller and
forwards the tenant and the acting user as headers. The ledger trusts them.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status

from .services.clock import Clock, system_clock


@dataclass(frozen=True)
class RequestContext:
    company_id: int
    actor_id: Optional[int]


def get_context(
    x_company_id: Optional[int] = Header(None),
    x_actor_id: Optional[int] = Header(None),
) -> RequestContext:
    if x_company_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Company-Id header is required",
        )
    return RequestContext(company_id=x_company_id, actor_id=x_actor_id)


def require_actor(
    x_company_id: Optional[int] = Header(None),
    x_actor_id: Optional[int] = Header(None),
) -> RequestContext:
    """For mutations: the acting user is recorded on the ledger rows."""
    ctx = get_context(x_company_id, x_actor_id)
    if ctx.actor_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header is required",
        )
    return ctx


def get_clock() -> Clock:
    """FastAPI dependency; override in tests."""
    return system_clock
