"""
Lifecycle tests: expiration sweep, cancellation, transfer and edits.
"""

import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import update

from conftest import NOW, emitted, make_template, sell
from credit_packages.models import ClientPackages, PackageStatus
from credit_packages.schemas.client_packages import ClientPackageUpdate
from credit_packages.services import credit_ledger, expiration_checker, lifecycle
from credit_packages.services.errors import (
    AlreadyCancelled,
    InvalidRequest,
    NotFound,
    NotTransferable,
)


def paid(db, clock, template, client_id=1):
    return sell(
        db, clock, template_id=template.id, client_id=client_id, paid_amount=Decimal("100")
    ).value


def backdate(db, package_id, expires_at):
    db.execute(
        update(ClientPackages)
        .where(ClientPackages.id == package_id)
        .values(expires_at=expires_at)
    )
    db.commit()


class TestExpireOverdue:
    """Bulk expiration."""

    def test_expires_only_overdue_active(self, db, template, clock, events_redis):
        overdue = [paid(db, clock, template) for _ in range(3)]
        fresh = paid(db, clock, template)
        pending = sell(db, clock, template_id=template.id).value
        for package in overdue + [pending]:
            backdate(db, package.id, NOW - timedelta(days=1))

        expired = lifecycle.expire_overdue(db, 1, clock=clock, batch_size=2)

        assert expired == 3
        statuses = {p.id: db.get(ClientPackages, p.id).status for p in overdue + [fresh, pending]}
        assert [statuses[p.id] for p in overdue] == [PackageStatus.EXPIRED] * 3
        assert statuses[fresh.id] == PackageStatus.ACTIVE
        assert statuses[pending.id] == PackageStatus.PENDING_PAYMENT
        assert emitted(events_redis).count("package_expired") == 3

    def test_second_run_is_a_no_op(self, db, template, clock):
        package = paid(db, clock, template)
        backdate(db, package.id, NOW - timedelta(minutes=1))

        assert lifecycle.expire_overdue(db, 1, clock=clock) == 1
        assert lifecycle.expire_overdue(db, 1, clock=clock) == 0
        assert db.get(ClientPackages, package.id).status == PackageStatus.EXPIRED

    def test_tenant_scope(self, db, template, clock):
        package = paid(db, clock, template)
        backdate(db, package.id, NOW - timedelta(days=1))

        assert lifecycle.expire_overdue(db, 2, clock=clock) == 0
        assert lifecycle.expire_overdue(db, None, clock=clock) == 1

    def test_expiry_boundary_is_exclusive(self, db, template, clock):
        package = paid(db, clock, template)
        backdate(db, package.id, NOW)

        assert lifecycle.expire_overdue(db, 1, clock=clock) == 0

    def test_events_name_only_updated_packages(self, db, template, clock, events_redis):
        first = paid(db, clock, template)
        second = paid(db, clock, template, client_id=2)
        for package in (first, second):
            backdate(db, package.id, NOW - timedelta(days=1))
        first_id, second_id = first.id, second.id
        events_redis.reset_mock()

        def cancel_first_then_update(entity):
            # first is cancelled after being selected as a candidate
            db.execute(
                update(ClientPackages)
                .where(ClientPackages.id == first_id)
                .values(status=PackageStatus.CANCELLED)
            )
            return update(entity)

        with patch.object(lifecycle, "update", side_effect=cancel_first_then_update):
            expired = lifecycle.expire_overdue(db, 1, clock=clock)

        assert expired == 1
        pushed = [json.loads(call.args[1]) for call in events_redis.rpush.call_args_list]
        assert [(e["type"], e["client_package_id"], e["client_id"]) for e in pushed] == [
            ("package_expired", second_id, 2),
        ]
        assert db.get(ClientPackages, first_id).status == PackageStatus.CANCELLED
        assert db.get(ClientPackages, second_id).status == PackageStatus.EXPIRED

    def test_sweep_pass(self, db, session_factory, template, clock, monkeypatch):
        package = paid(db, clock, template)
        backdate(db, package.id, NOW - timedelta(days=1))
        monkeypatch.setattr(expiration_checker, "SessionLocal", session_factory)

        assert expiration_checker.run_expiration_sweep(clock=clock) == 1
        assert expiration_checker.run_expiration_sweep(clock=clock) == 0


class TestCancelPackage:
    """Administrative cancellation."""

    def test_cancel_active(self, db, template, clock, events_redis):
        package = paid(db, clock, template)

        lifecycle.cancel_package(db, 1, 99, package.id, "refund requested", clock=clock)

        db.refresh(package)
        assert package.status == PackageStatus.CANCELLED
        assert package.cancelled_at == NOW
        assert "refund requested" in package.internal_notes
        assert "package_cancelled" in emitted(events_redis)

    def test_cancel_pending(self, db, template, clock):
        package = sell(db, clock, template_id=template.id).value
        lifecycle.cancel_package(db, 1, 99, package.id, clock=clock)
        db.refresh(package)
        assert package.status == PackageStatus.CANCELLED

    def test_cancel_twice(self, db, template, clock):
        package = paid(db, clock, template)
        lifecycle.cancel_package(db, 1, 99, package.id, clock=clock)

        with pytest.raises(AlreadyCancelled):
            lifecycle.cancel_package(db, 1, 99, package.id, clock=clock)

    def test_terminal_packages_cannot_be_cancelled(self, db, template, clock):
        completed = paid(db, clock, template)
        credit_ledger.register_usage(db, 1, 7, completed.id, 1, quantity=5, clock=clock)

        expired = paid(db, clock, template)
        backdate(db, expired.id, NOW - timedelta(days=1))
        lifecycle.expire_overdue(db, 1, clock=clock)

        for package in (completed, expired):
            with pytest.raises(InvalidRequest):
                lifecycle.cancel_package(db, 1, 99, package.id, clock=clock)


class TestTransfer:
    """Scenario E and transfer policy."""

    def test_non_transferable(self, db, seed, clock):
        template = make_template(db, clock, transferable=False)
        package = paid(db, clock, template)

        with pytest.raises(NotTransferable):
            lifecycle.transfer_package(db, 1, 99, package.id, 2, clock=clock)
        db.refresh(package)
        assert package.client_id == 1

    def test_custom_package_not_transferable(self, db, seed, clock):
        package = sell(db, clock, name="Custom", items=[{"service_id": 1, "quantity": 1}]).value

        with pytest.raises(NotTransferable):
            lifecycle.transfer_package(db, 1, 99, package.id, 2, clock=clock)

    def test_transfer_keeps_history(self, db, template, clock, events_redis):
        package = paid(db, clock, template)
        usage = credit_ledger.register_usage(db, 1, 7, package.id, 1, quantity=2, clock=clock)

        lifecycle.transfer_package(db, 1, 99, package.id, 2, notes="gift", clock=clock)

        db.refresh(package)
        assert package.client_id == 2
        assert package.status == PackageStatus.ACTIVE
        assert package.items[0].used_quantity == 2
        assert package.paid_amount == Decimal("100.00")
        assert package.expires_at == NOW + timedelta(days=90)
        assert "gift" in package.internal_notes

        rows, total = credit_ledger.list_usages(db, 1, client_id=2)
        assert [u.id for u in rows] == [usage.id]
        assert credit_ledger.list_usages(db, 1, client_id=1) == ([], 0)
        assert "package_transferred" in emitted(events_redis)

    def test_target_must_exist_in_tenant(self, db, template, clock):
        package = paid(db, clock, template)

        with pytest.raises(NotFound):
            lifecycle.transfer_package(db, 1, 99, package.id, 10, clock=clock)

    def test_transfer_to_owner(self, db, template, clock):
        package = paid(db, clock, template)

        with pytest.raises(InvalidRequest):
            lifecycle.transfer_package(db, 1, 99, package.id, 1, clock=clock)


class TestUpdatePackage:
    """Notes and expiry edits."""

    def test_update_notes_and_expiry(self, db, template, clock):
        package = paid(db, clock, template)

        lifecycle.update_package(
            db, 1, package.id,
            ClientPackageUpdate(notes="Prefers mornings", expires_at=NOW + timedelta(days=200)),
        )

        db.refresh(package)
        assert package.notes == "Prefers mornings"
        assert package.expires_at == NOW + timedelta(days=200)
        assert package.status == PackageStatus.ACTIVE

    def test_unknown_package(self, db, seed):
        with pytest.raises(NotFound):
            lifecycle.update_package(db, 1, 404, ClientPackageUpdate(notes="x"))
