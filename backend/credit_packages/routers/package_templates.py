# backend/credit_packages/routers/package_templates.py
# DELETE = soft delete (sold packages keep their template reference)

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..context import RequestContext, get_clock, get_context
from ..database import get_db
from ..schemas.package_templates import (
    PackageTemplateCreate,
    PackageTemplateRead,
    PackageTemplateUpdate,
)
from ..services import template_catalog
from ..services.clock import Clock

router = APIRouter(prefix="/package_templates", tags=["package_templates"])


@router.get("/", response_model=list[PackageTemplateRead])
def list_package_templates(
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    service_id: Optional[int] = Query(None),
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    templates = template_catalog.list_templates(
        db, ctx.company_id, is_active=is_active, search=search, service_id=service_id
    )
    return [template_catalog.template_to_read(t) for t in templates]


@router.get("/{id}", response_model=PackageTemplateRead)
def get_package_template(
    id: int,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    return template_catalog.template_to_read(
        template_catalog.get_template(db, ctx.company_id, id)
    )


@router.post(
    "/", response_model=PackageTemplateRead, status_code=status.HTTP_201_CREATED
)
def create_package_template(
    data: PackageTemplateCreate,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    template = template_catalog.create_template(db, ctx.company_id, data, clock=clock)
    return template_catalog.template_to_read(template)


@router.patch("/{id}", response_model=PackageTemplateRead)
def update_package_template(
    id: int,
    data: PackageTemplateUpdate,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    template = template_catalog.update_template(db, ctx.company_id, id, data, clock=clock)
    return template_catalog.template_to_read(template)


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_package_template(
    id: int,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    template_catalog.delete_template(db, ctx.company_id, id, clock=clock)
