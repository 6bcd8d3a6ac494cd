"""
Credit ledger tests: debits, releases, completion and lazy expiry.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from conftest import NOW, emitted, make_template, sell
from credit_packages.models import ClientPackageItems, PackageStatus, UsageStatus, ValidityType
from credit_packages.schemas.client_packages import ClientPackageUpdate
from credit_packages.services import credit_ledger, lifecycle
from credit_packages.services.errors import (
    AlreadyCancelled,
    Expired,
    InsufficientCredits,
    InvalidRequest,
    NotActive,
    NotFound,
    ServiceNotInPackage,
)


@pytest.fixture
def active_package(db, template, clock):
    return sell(db, clock, template_id=template.id, paid_amount=Decimal("100")).value


def use(db, clock, package, service_id=1, quantity=1, company_id=1):
    return credit_ledger.register_usage(
        db, company_id, 7, package.id, service_id, quantity=quantity, clock=clock
    )


def assert_item_invariant(db):
    for item in db.query(ClientPackageItems).all():
        assert 0 <= item.used_quantity + item.cancelled_quantity <= item.quantity


class TestRegisterUsage:
    """Debiting credits."""

    def test_debit_creates_usage(self, db, active_package, clock, events_redis):
        usage = use(db, clock, active_package, quantity=2)

        assert usage.status == UsageStatus.USED
        assert usage.quantity == 2
        assert usage.used_by == 7
        assert usage.used_at == clock.now()
        assert active_package.items[0].used_quantity == 2
        assert active_package.items[0].available_quantity == 3
        assert active_package.status == PackageStatus.ACTIVE
        assert "usage_registered" in emitted(events_redis)

    def test_scenario_b_full_use_completes(self, db, active_package, clock, events_redis):
        use(db, clock, active_package, quantity=5)

        db.refresh(active_package)
        assert active_package.items[0].used_quantity == 5
        assert active_package.status == PackageStatus.COMPLETED
        assert active_package.completed_at == clock.now()
        assert "package_completed" in emitted(events_redis)

    def test_over_debit_rejected_with_context(self, db, active_package, clock):
        use(db, clock, active_package, quantity=4)

        with pytest.raises(InsufficientCredits) as exc:
            use(db, clock, active_package, quantity=2)

        assert exc.value.context == {
            "package_id": active_package.id,
            "item_id": active_package.items[0].id,
            "available": 1,
            "requested": 2,
        }
        db.refresh(active_package.items[0])
        assert active_package.items[0].used_quantity == 4
        assert_item_invariant(db)

    def test_pending_package_not_active(self, db, template, clock):
        package = sell(db, clock, template_id=template.id).value

        with pytest.raises(NotActive):
            use(db, clock, package)

    def test_service_not_in_package(self, db, active_package, clock):
        with pytest.raises(ServiceNotInPackage) as exc:
            use(db, clock, active_package, service_id=2)
        assert isinstance(exc.value, InvalidRequest)

    def test_quantity_must_be_positive(self, db, active_package, clock):
        with pytest.raises(InvalidRequest):
            use(db, clock, active_package, quantity=0)

    def test_other_tenant_cannot_debit(self, db, active_package, clock):
        with pytest.raises(NotFound):
            use(db, clock, active_package, company_id=2)

    def test_scenario_d_lazy_expiry(self, db, active_package, clock, events_redis):
        lifecycle.update_package(
            db, 1, active_package.id, ClientPackageUpdate(expires_at=NOW - timedelta(days=1))
        )

        with pytest.raises(Expired):
            use(db, clock, active_package)

        db.refresh(active_package)
        assert active_package.status == PackageStatus.EXPIRED
        assert active_package.items[0].used_quantity == 0
        assert "package_expired" in emitted(events_redis)

    def test_first_use_activates_window(self, db, seed, clock, events_redis):
        template = make_template(db, clock, validity_type=ValidityType.DAYS_FROM_ACTIVATION)
        package = sell(db, clock, template_id=template.id, paid_amount=Decimal("100")).value
        assert package.expires_at is None

        clock.current = NOW + timedelta(days=10)
        use(db, clock, package)

        db.refresh(package)
        assert package.activation_date == NOW + timedelta(days=10)
        assert package.expires_at == NOW + timedelta(days=100)
        assert "package_activated" in emitted(events_redis)

        # A second use does not move the window
        clock.current = NOW + timedelta(days=20)
        use(db, clock, package)
        db.refresh(package)
        assert package.activation_date == NOW + timedelta(days=10)


class TestCancelUsage:
    """Releasing credits."""

    def test_scenario_c_cancel_reopens_completed(self, db, active_package, clock, events_redis):
        usages = [use(db, clock, active_package) for _ in range(5)]
        db.refresh(active_package)
        assert active_package.status == PackageStatus.COMPLETED

        cancelled = credit_ledger.cancel_usage(db, 1, 8, usages[2].id, "client no-show", clock=clock)

        assert cancelled.status == UsageStatus.CANCELLED
        assert cancelled.cancelled_by == 8
        assert cancelled.cancellation_reason == "client no-show"
        db.refresh(active_package)
        assert active_package.items[0].used_quantity == 4
        assert active_package.items[0].cancelled_quantity == 0
        assert active_package.status == PackageStatus.ACTIVE
        assert active_package.completed_at is None
        assert "package_reopened" in emitted(events_redis)

    def test_released_credit_can_be_reused(self, db, active_package, clock):
        usage = use(db, clock, active_package, quantity=5)
        credit_ledger.cancel_usage(db, 1, 8, usage.id, "wrong client", clock=clock)

        use(db, clock, active_package, quantity=5)
        db.refresh(active_package)
        assert active_package.items[0].used_quantity == 5
        assert_item_invariant(db)

    def test_cancel_twice(self, db, active_package, clock):
        usage = use(db, clock, active_package)
        credit_ledger.cancel_usage(db, 1, 8, usage.id, "mistake", clock=clock)

        with pytest.raises(AlreadyCancelled):
            credit_ledger.cancel_usage(db, 1, 8, usage.id, "mistake", clock=clock)

        db.refresh(active_package)
        assert active_package.items[0].used_quantity == 0

    def test_cancel_unknown_or_foreign_usage(self, db, active_package, clock):
        usage = use(db, clock, active_package)

        with pytest.raises(NotFound):
            credit_ledger.cancel_usage(db, 1, 8, 999, "x", clock=clock)
        with pytest.raises(NotFound):
            credit_ledger.cancel_usage(db, 2, 8, usage.id, "x", clock=clock)

    def test_counter_underflow_is_rejected(self, db, active_package, clock):
        usage = use(db, clock, active_package, quantity=2)
        item_id = usage.item_id
        # counter lost a debit outside the ledger
        db.execute(
            update(ClientPackageItems)
            .where(ClientPackageItems.id == item_id)
            .values(used_quantity=1)
        )
        db.commit()

        with pytest.raises(IntegrityError):
            credit_ledger.cancel_usage(db, 1, 8, usage.id, "x", clock=clock)

        db.refresh(usage)
        assert usage.status == UsageStatus.USED
        assert db.get(ClientPackageItems, item_id, populate_existing=True).used_quantity == 1


class TestListUsages:
    """Usage history queries."""

    def test_filters_and_order(self, db, active_package, clock):
        first = use(db, clock, active_package)
        clock.current = NOW + timedelta(hours=1)
        second = use(db, clock, active_package, quantity=2)
        credit_ledger.cancel_usage(db, 1, 8, first.id, "x", clock=clock)

        rows, total = credit_ledger.list_usages(db, 1, client_package_id=active_package.id)
        assert total == 2
        assert [u.id for u in rows] == [second.id, first.id]

        rows, total = credit_ledger.list_usages(db, 1, status=UsageStatus.USED)
        assert [u.id for u in rows] == [second.id]

        rows, total = credit_ledger.list_usages(db, 1, service_id=2)
        assert total == 0

        rows, total = credit_ledger.list_usages(db, 1, start_date=NOW + timedelta(minutes=30))
        assert [u.id for u in rows] == [second.id]

        rows, total = credit_ledger.list_usages(db, 1, limit=1, offset=1)
        assert total == 2
        assert [u.id for u in rows] == [first.id]

        assert credit_ledger.list_usages(db, 2) == ([], 0)
