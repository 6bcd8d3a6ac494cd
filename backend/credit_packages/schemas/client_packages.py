# backend/credit_packages/schemas/client_packages.py

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..models import PackageStatus


# ──────────────────────────────────────────────────────────────────────────────
# Request Schemas
# ──────────────────────────────────────────────────────────────────────────────

class SellPackageItemIn(BaseModel):
    """Item of a custom package (sold without a template)"""
    service_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Optional[Decimal] = Field(
        None, ge=0, description="Default: service's current price"
    )


class SellPackageRequest(BaseModel):
    """Request body for POST /client_packages/sell"""
    client_id: int
    template_id: Optional[int] = Field(None, description="Omit for a custom package")
    name: Optional[str] = Field(None, description="Required for custom packages")
    description: Optional[str] = None
    sale_price: Optional[Decimal] = Field(None, ge=0)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    payment_method: Optional[str] = None
    installments: int = Field(1, ge=1, le=24)
    paid_amount: Decimal = Field(Decimal("0"), ge=0, description="Down payment")
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    activation_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    items: Optional[list[SellPackageItemIn]] = None


class ClientPackageUpdate(BaseModel):
    """Request body for PATCH /client_packages/{id}; status is not editable"""
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    expires_at: Optional[datetime] = None


class RegisterPaymentRequest(BaseModel):
    """Request body for POST /client_packages/{id}/payments"""
    amount: Decimal = Field(..., description="Must be > 0")
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class TransferPackageRequest(BaseModel):
    """Request body for POST /client_packages/{id}/transfer"""
    to_client_id: int
    notes: Optional[str] = None


class CancelPackageRequest(BaseModel):
    """Request body for POST /client_packages/{id}/cancel"""
    reason: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# Read Schemas
# ──────────────────────────────────────────────────────────────────────────────

class ClientPackageItemRead(BaseModel):
    id: int
    service_id: int
    service_name: str
    quantity: int
    used_quantity: int
    cancelled_quantity: int
    available_quantity: int
    unit_price: Decimal
    total_value: Decimal
    used_value: Decimal


class PackageUsageStats(BaseModel):
    total_items: int
    used_items: int
    available_items: int
    usage_percent: Decimal
    total_value: Decimal
    used_value: Decimal
    available_value: Decimal


class ClientPackageRead(BaseModel):
    id: int
    company_id: int
    client_id: int
    client_name: str
    template_id: Optional[int] = None
    template_version: Optional[int] = None
    name: str
    description: Optional[str] = None
    code: str
    status: PackageStatus
    purchase_date: datetime
    activation_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    original_price: Decimal
    sale_price: Decimal
    discount_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_method: Optional[str] = None
    installments: int
    transferable: bool
    notes: Optional[str] = None
    items: list[ClientPackageItemRead]
    usage_stats: PackageUsageStats
    created_at: datetime


class ClientPackageList(BaseModel):
    packages: list[ClientPackageRead]
    total: int


class WarningRead(BaseModel):
    """Partial success: the operation committed but a dependency failed"""
    code: str
    dependency: str
    detail: str
    context: dict[str, Any] = {}


class ClientPackageOperationResponse(BaseModel):
    package: ClientPackageRead
    warnings: list[WarningRead] = []


class PackagePaymentRead(BaseModel):
    id: int
    client_package_id: int
    amount: Decimal
    method: Optional[str] = None
    notes: Optional[str] = None
    paid_at: datetime
    recorded_by: Optional[int] = None

    model_config = {"from_attributes": True}


class InstallmentRead(BaseModel):
    number: int
    amount: Decimal


class InstallmentScheduleRead(BaseModel):
    client_package_id: int
    amount_due: Decimal
    installments: list[InstallmentRead]


class ExpireOverdueResponse(BaseModel):
    expired: int
