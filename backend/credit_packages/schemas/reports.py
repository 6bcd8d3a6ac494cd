# backend/credit_packages/schemas/reports.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class AvailableService(BaseModel):
    service_id: int
    service_name: str
    available: int
    expires_at: Optional[datetime] = None


class ClientBalanceRead(BaseModel):
    """Response for GET /reports/clients/{client_id}/balance"""
    client_id: int
    client_name: str
    active_packages: int
    total_purchased: Decimal
    total_paid: Decimal
    total_pending: Decimal
    available_services: list[AvailableService]


class Period(BaseModel):
    start: datetime
    end: datetime


class SalesStats(BaseModel):
    count: int
    total_value: Decimal
    average_value: Decimal


class UsageStats(BaseModel):
    count: int
    total_value: Decimal


class ExpiringStats(BaseModel):
    count: int
    value: Decimal


class ActiveStats(BaseModel):
    count: int
    total_value: Decimal
    available_value: Decimal


class TopTemplate(BaseModel):
    template_id: Optional[int] = None  # None = custom packages
    template_name: str
    count: int
    revenue: Decimal


class TopService(BaseModel):
    service_id: int
    service_name: str
    usages: int


class PackagesSummaryRead(BaseModel):
    """Response for GET /reports/summary"""
    period: Period
    sales: SalesStats
    usages: UsageStats
    expiring_packages: ExpiringStats
    active_packages: ActiveStats
    top_packages: list[TopTemplate]
    top_services: list[TopService]
