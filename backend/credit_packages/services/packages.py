# backend/credit_packages/services/packages.py
"""Loading client packages inside a tenant, plus sale-code numbering."""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import ClientPackages as DBClientPackage
from .errors import NotFound


def load_package(
    db: Session,
    company_id: int,
    package_id: int,
    lock: bool = False,
) -> DBClientPackage:
    """
    Fetch a package of the tenant.

    lock=True re-reads the row with SELECT ... FOR UPDATE and overwrites any
    stale state held by the session: mutations decide on fresh values only.
    """
    query = db.query(DBClientPackage).filter(
        DBClientPackage.id == package_id,
        DBClientPackage.company_id == company_id,
    )
    if lock:
        query = query.with_for_update().populate_existing()

    package = query.first()
    if not package:
        raise NotFound(f"Package {package_id} not found", package_id=package_id)
    return package


def next_package_code(db: Session, company_id: int, purchase_date: datetime) -> str:
    """PKG-<year>-<sequence within the tenant and year>, e.g. PKG-2026-0042."""
    year = purchase_date.year
    count = (
        db.query(func.count(DBClientPackage.id))
        .filter(
            DBClientPackage.company_id == company_id,
            DBClientPackage.purchase_date >= datetime(year, 1, 1),
            DBClientPackage.purchase_date < datetime(year + 1, 1, 1),
        )
        .scalar()
    )
    return f"PKG-{year}-{count + 1:04d}"


def append_note(existing: Optional[str], line: str) -> str:
    return f"{existing}\n\n{line}" if existing else line
