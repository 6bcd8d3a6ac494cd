# backend/credit_packages/services/directory.py
"""
Catalog and client lookups.

The ledger never writes services or clients; it only needs to know that a
referenced row exists inside the tenant and what it costs / is called.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from ..models import Services as DBService, Users as DBUser
from .errors import NotFound


@dataclass(frozen=True)
class ServiceRef:
    id: int
    name: str
    price: Decimal


@dataclass(frozen=True)
class ClientRef:
    id: int
    name: str


def get_services(
    db: Session,
    company_id: int,
    service_ids: Iterable[int],
) -> dict[int, ServiceRef]:
    """Resolve several services at once; NotFound lists every missing id."""
    wanted = set(service_ids)
    if not wanted:
        return {}

    rows = (
        db.query(DBService)
        .filter(
            DBService.id.in_(wanted),
            DBService.company_id == company_id,
            DBService.is_active.is_(True),
        )
        .all()
    )
    found = {
        s.id: ServiceRef(id=s.id, name=s.name, price=Decimal(s.price))
        for s in rows
    }

    missing = sorted(wanted - found.keys())
    if missing:
        raise NotFound(
            "One or more services were not found",
            service_ids=missing,
        )
    return found


def get_client(db: Session, company_id: int, client_id: int) -> ClientRef:
    user = (
        db.query(DBUser)
        .filter(
            DBUser.id == client_id,
            DBUser.company_id == company_id,
            DBUser.is_active.is_(True),
        )
        .first()
    )
    if not user:
        raise NotFound(f"Client {client_id} not found", client_id=client_id)
    return ClientRef(id=user.id, name=user.full_name)
