# backend/credit_packages/schemas/package_usages.py

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..models import PackageStatus, UsageStatus


class RegisterUsageRequest(BaseModel):
    """Request body for POST /package_usages"""
    client_package_id: int
    service_id: int
    quantity: int = Field(1, ge=1)
    appointment_id: Optional[int] = None
    provider_id: Optional[int] = None
    notes: Optional[str] = None


class CancelUsageRequest(BaseModel):
    """Request body for POST /package_usages/{id}/cancel"""
    reason: str = Field(..., min_length=1)


class UsageRead(BaseModel):
    id: int
    client_package_id: int
    package_name: str
    package_status: PackageStatus
    client_id: int
    client_name: str
    service_id: int
    service_name: str
    quantity: int
    used_at: datetime
    used_by: Optional[int] = None
    provider_id: Optional[int] = None
    appointment_id: Optional[int] = None
    status: UsageStatus
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    cancellation_reason: Optional[str] = None


class UsageList(BaseModel):
    usages: list[UsageRead]
    total: int
