"""
Staleness tracker tests.

A remaining-hours figure is stale once the task's ledger total has moved
away from the total snapshotted when the figure was entered.
"""

from datetime import date
from decimal import Decimal

import pytest

from planner.extensions import db
from planner.models import Task
from planner.services import staleness_service, timesheet_service
from planner.validation import ForbiddenError, NotFoundError, ValidationError


class TestIsRemainingStale:
    @pytest.mark.parametrize(
        "remaining,snapshot,total,expected",
        [
            (None, None, Decimal("5"), False),
            (None, Decimal("2"), Decimal("5"), False),
            (Decimal("8"), None, Decimal("0"), True),
            (Decimal("8"), Decimal("5"), Decimal("5"), False),
            (Decimal("8"), Decimal("5"), Decimal("5.01"), False),
            (Decimal("8"), Decimal("5"), Decimal("5.02"), True),
            (Decimal("8"), Decimal("5"), Decimal("3"), True),
            (Decimal("0"), Decimal("0"), None, False),
        ],
    )
    def test_rule(self, remaining, snapshot, total, expected):
        assert staleness_service.is_remaining_stale(remaining, snapshot, total) is expected


class TestSetRemainingHours:
    def test_snapshot_follows_ledger(self, actor, make_task, log_hours):
        task = make_task("Task")
        log_hours(actor, task, date(2026, 3, 2), 6)

        updated = staleness_service.set_remaining_hours(task.id, "12", requested_by=actor.id)

        assert updated.remaining_hours == Decimal("12")
        assert updated.last_remaining_update_total == Decimal("6")

    def test_staleness_toggles(self, actor, make_task):
        task = make_task("Task")
        staleness_service.set_remaining_hours(task.id, 10, requested_by=actor.id)

        def stale():
            db.session.expire_all()
            t = db.session.get(Task, task.id)
            total = staleness_service.ledger_total(t.id)
            return staleness_service.is_remaining_stale(t.remaining_hours, t.last_remaining_update_total, total)

        assert stale() is False

        timesheet_service.upsert_entry(actor.id, task.id, "2026-03-02", 3, actor.id)
        assert stale() is True

        staleness_service.set_remaining_hours(task.id, 7, requested_by=actor.id)
        assert stale() is False

    def test_null_clears_figure(self, actor, make_task):
        task = make_task("Task", remaining_hours="5", last_remaining_update_total="1")

        updated = staleness_service.set_remaining_hours(task.id, None, requested_by=actor.id)

        assert updated.remaining_hours is None
        assert staleness_service.is_remaining_stale(updated.remaining_hours, updated.last_remaining_update_total, 99) is False

    def test_remaining_hours_rounded_to_two_places(self, actor, make_task):
        task = make_task("Task")

        updated = staleness_service.set_remaining_hours(task.id, "3.456", requested_by=actor.id)
        assert updated.remaining_hours == Decimal("3.46")

        updated = staleness_service.set_remaining_hours(task.id, "0.001", requested_by=actor.id)
        assert updated.remaining_hours == Decimal("0")

    def test_negative_rejected(self, actor, make_task):
        task = make_task("Task")
        with pytest.raises(ValidationError):
            staleness_service.set_remaining_hours(task.id, -1, requested_by=actor.id)

    def test_non_member_forbidden(self, other_actor, make_task):
        task = make_task("Task")
        with pytest.raises(ForbiddenError):
            staleness_service.set_remaining_hours(task.id, 4, requested_by=other_actor.id)

    def test_unknown_task(self, actor):
        with pytest.raises(NotFoundError):
            staleness_service.set_remaining_hours(9999, 4, requested_by=actor.id)
