"""
Payment tracker tests.

- scenario A: pending package becomes active once fully paid
- a failing financial ledger degrades the result, never the payment
- installment splits add up to the amount due
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from conftest import FailingSink, emitted, sell
from credit_packages.models import PackagePayments, PackageStatus
from credit_packages.services import lifecycle, payment_tracker
from credit_packages.services.errors import InvalidAmount, InvalidRequest, NotActive, NotFound


@pytest.fixture
def pending_package(db, template, clock):
    return sell(db, clock, template_id=template.id).value


def pay(db, clock, package, amount, sink=None, method=None):
    return payment_tracker.register_payment(
        db, 1, 99, package.id, amount, payment_method=method, sink=sink, clock=clock
    )


class TestRegisterPayment:
    """Recording payments."""

    def test_scenario_a_full_payment_activates(self, db, pending_package, clock, sink, events_redis):
        assert pending_package.status == PackageStatus.PENDING_PAYMENT

        result = pay(db, clock, pending_package, Decimal("100"), sink=sink, method="card")

        package = result.value
        assert package.status == PackageStatus.ACTIVE
        assert package.paid_amount == Decimal("100.00")
        assert package.payment_method == "card"
        assert result.warnings == []
        assert [r.amount for r in sink.requests] == [Decimal("100.00")]
        assert "package_activated" in emitted(events_redis)

    def test_partial_payments_accumulate(self, db, pending_package, clock):
        pay(db, clock, pending_package, Decimal("33.33"))
        pay(db, clock, pending_package, Decimal("33.33"))
        result = pay(db, clock, pending_package, Decimal("33.33"))
        assert result.value.status == PackageStatus.PENDING_PAYMENT
        assert result.value.paid_amount == Decimal("99.99")

        result = pay(db, clock, pending_package, "0.01")
        assert result.value.status == PackageStatus.ACTIVE
        assert result.value.paid_amount == Decimal("100.00")

    def test_discount_lowers_amount_due(self, db, template, clock):
        package = sell(db, clock, template_id=template.id, discount_amount=Decimal("20")).value

        result = pay(db, clock, package, Decimal("80"))
        assert result.value.status == PackageStatus.ACTIVE

    def test_non_positive_amount(self, db, pending_package, clock):
        for amount in (Decimal("0"), Decimal("-5")):
            with pytest.raises(InvalidAmount) as exc:
                pay(db, clock, pending_package, amount)
            assert isinstance(exc.value, InvalidRequest)
        assert db.query(PackagePayments).count() == 0

    def test_cancelled_package_rejects_payment(self, db, pending_package, clock):
        lifecycle.cancel_package(db, 1, 99, pending_package.id, clock=clock)

        with pytest.raises(NotActive):
            pay(db, clock, pending_package, Decimal("10"))

    def test_unknown_package(self, db, seed, clock):
        with pytest.raises(NotFound):
            payment_tracker.register_payment(db, 1, 99, 404, Decimal("10"), clock=clock)

    def test_sink_failure_is_reported_not_rolled_back(self, db, pending_package, clock):
        failing = FailingSink()

        result = pay(db, clock, pending_package, Decimal("100"), sink=failing)

        assert result.degraded
        warning = result.first_warning()
        assert warning.dependency == "financial_ledger"
        assert warning.to_dict()["code"] == "dependency_degraded"
        assert warning.context["client_package_id"] == pending_package.id

        db.refresh(pending_package)
        assert pending_package.paid_amount == Decimal("100.00")
        assert pending_package.status == PackageStatus.ACTIVE
        assert db.query(PackagePayments).count() == 1

    def test_history(self, db, template, clock):
        package = sell(db, clock, template_id=template.id, paid_amount=Decimal("40")).value
        pay(db, clock, package, Decimal("60"), method="cash")

        history = payment_tracker.payment_history(db, 1, package.id)
        assert [(p.amount, p.method) for p in history] == [
            (Decimal("40.00"), None),
            (Decimal("60.00"), "cash"),
        ]

        with pytest.raises(NotFound):
            payment_tracker.payment_history(db, 2, package.id)


def _package(sale_price, discount, installments):
    return SimpleNamespace(
        sale_price=Decimal(sale_price),
        discount_amount=Decimal(discount),
        installments=installments,
    )


class TestInstallmentSchedule:
    """Splitting the amount due."""

    def test_remainder_goes_to_last(self):
        parts = payment_tracker.installment_schedule(_package("100.00", "0", 3), discount_before=True)
        assert parts == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]

    def test_discount_before_split(self):
        parts = payment_tracker.installment_schedule(_package("100.00", "10.00", 3), discount_before=True)
        assert parts == [Decimal("30.00"), Decimal("30.00"), Decimal("30.00")]

    def test_discount_after_split(self):
        parts = payment_tracker.installment_schedule(_package("100.00", "40.00", 3), discount_before=False)
        assert parts == [Decimal("0.00"), Decimal("26.66"), Decimal("33.34")]
        assert sum(parts) == Decimal("60.00")

    def test_single_installment(self):
        parts = payment_tracker.installment_schedule(_package("59.90", "0", 1))
        assert parts == [Decimal("59.90")]
