# backend/credit_packages/schemas/package_templates.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ..models import ValidityType


class PackageTemplateItemIn(BaseModel):
    service_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Optional[Decimal] = Field(
        None, ge=0, description="Fixed unit price; default = service price at sale time"
    )


class PackageTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    code: Optional[str] = None
    validity_days: int = Field(..., ge=1)
    validity_type: ValidityType = ValidityType.DAYS_FROM_PURCHASE
    original_price: Optional[Decimal] = Field(
        None, ge=0, description="Default: Σ unit price × quantity"
    )
    sale_price: Optional[Decimal] = Field(None, ge=0, description="Default: original price")
    allow_partial_use: bool = True
    transferable: bool = False
    max_installments: int = Field(1, ge=1, le=24)
    items: list[PackageTemplateItemIn] = Field(..., min_length=1)


class PackageTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    code: Optional[str] = None
    validity_days: Optional[int] = Field(None, ge=1)
    validity_type: Optional[ValidityType] = None
    original_price: Optional[Decimal] = Field(None, ge=0)
    sale_price: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None
    allow_partial_use: Optional[bool] = None
    transferable: Optional[bool] = None
    max_installments: Optional[int] = Field(None, ge=1, le=24)
    items: Optional[list[PackageTemplateItemIn]] = Field(None, min_length=1)
    expected_version: Optional[int] = Field(
        None, description="Required when editing pricing/items/validity of a sold template"
    )


class PackageTemplateItemRead(BaseModel):
    id: int
    service_id: int
    service_name: str
    quantity: int
    unit_price: Optional[Decimal] = None
    service_price: Decimal


class PackageTemplateRead(BaseModel):
    id: int
    company_id: int
    name: str
    description: Optional[str] = None
    code: Optional[str] = None
    validity_days: int
    validity_type: ValidityType
    original_price: Decimal
    sale_price: Decimal
    discount_percent: Decimal
    is_active: bool
    allow_partial_use: bool
    transferable: bool
    max_installments: int
    version: int
    items: list[PackageTemplateItemRead]
    created_at: datetime
    updated_at: Optional[datetime] = None
