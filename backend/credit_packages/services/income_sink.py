# backend/credit_packages/services/income_sink.py
"""
Financial-ledger sink.

Package payments are income for the tenant. Posting them to the financial
ledger is owned by another module, the ledger only hands over an
IncomeRequest. The default sink queues the request in Redis; the financial
module consumes `ledger:income` and creates the transaction under its
"service packages" income category.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..config import settings
from ..redis_client import redis_client

logger = logging.getLogger(__name__)

INCOME_CATEGORY = "service_packages"


class IncomeSinkError(Exception):
    pass


@dataclass(frozen=True)
class IncomeRequest:
    company_id: int
    client_id: int
    client_package_id: int
    amount: Decimal
    payment_method: Optional[str]
    paid_at: datetime
    recorded_by: Optional[int] = None
    category: str = INCOME_CATEGORY
    description: str = "Service package payment"

    def to_json(self) -> str:
        data = asdict(self)
        data["amount"] = str(self.amount)
        data["paid_at"] = self.paid_at.isoformat()
        return json.dumps(data)


class IncomeSink:
    def record_income(self, request: IncomeRequest) -> None:
        raise NotImplementedError


class RedisIncomeSink(IncomeSink):
    def __init__(self, client=None, queue: Optional[str] = None):
        self.client = client if client is not None else redis_client
        self.queue = queue or settings.income_queue

    def record_income(self, request: IncomeRequest) -> None:
        try:
            self.client.rpush(self.queue, request.to_json())
        except Exception as e:
            raise IncomeSinkError(
                f"could not queue income for package {request.client_package_id}: {e}"
            ) from e
        logger.info(
            f"Income queued: package={request.client_package_id} "
            f"amount={request.amount} → {self.queue}"
        )


def get_income_sink() -> IncomeSink:
    """FastAPI dependency; override in tests."""
    return RedisIncomeSink()
