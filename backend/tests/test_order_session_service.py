"""
Order session lifecycle tests (service layer).

Covers the state machine, the merge rule on restore, NOT_FOUND handling,
per-user isolation and storage-failure rollback.
"""

import pytest
from sqlalchemy.exc import OperationalError

from till.extensions import db
from till.models import OrderSession
from till.services import order_session_service
from till.services.order_session_service import (
    OrderSessionNotFoundError,
    OrderSessionStorageError,
    RequestContext,
    UnauthenticatedError,
    assign_current_session_to_tab,
    complete_current_session,
    get_current_session,
    mark_current_session_pending_logout,
    persist_current_session,
    update_current_session,
)
from tests.conftest import make_item


def _rows(user_id, status=None):
    db.session.expire_all()
    query = db.session.query(OrderSession).filter_by(user_id=user_id)
    if status:
        query = query.filter_by(status=status)
    return query.all()


class TestLifecycleScenarios:
    def test_no_session_returns_none(self, ctx):
        assert get_current_session(ctx) is None
        assert _rows(ctx.user_id) == []

    def test_first_persist_creates_active_session(self, ctx):
        session, created = persist_current_session(ctx, [make_item(1)])

        assert created is True
        assert session.status == "active"
        assert session.items == [make_item(1)]
        assert session.user_id == ctx.user_id
        assert session.logout_time is None
        assert len(_rows(ctx.user_id)) == 1

    def test_second_persist_updates_same_row(self, ctx):
        first, _ = persist_current_session(ctx, [make_item(1)])
        second, created = persist_current_session(ctx, [make_item(1), make_item(2)])

        assert created is False
        assert second.id == first.id
        assert second.items == [make_item(1), make_item(2)]
        assert second.updated_at >= first.updated_at
        assert len(_rows(ctx.user_id)) == 1

    def test_persist_on_active_session_accepts_empty_cart(self, ctx):
        persist_current_session(ctx, [make_item(1)])
        session, created = persist_current_session(ctx, [])

        assert created is False
        assert session.items == []

    def test_logout_parks_session_with_items(self, ctx):
        persist_current_session(ctx, [make_item(1), make_item(2)])

        parked = mark_current_session_pending_logout(ctx)

        assert parked.status == "pending_logout"
        assert parked.logout_time is not None
        assert parked.items == [make_item(1), make_item(2)]
        assert _rows(ctx.user_id, "active") == []

    def test_restore_with_empty_cart_preserves_items(self, ctx):
        original, _ = persist_current_session(ctx, [make_item(1), make_item(2)])
        mark_current_session_pending_logout(ctx)

        restored, created = persist_current_session(ctx, [])

        assert created is False
        assert restored.id == original.id
        assert restored.status == "active"
        assert restored.logout_time is None
        assert restored.items == [make_item(1), make_item(2)]

    def test_restore_with_items_replaces_parked_items(self, ctx):
        original, _ = persist_current_session(ctx, [make_item(1), make_item(2)])
        mark_current_session_pending_logout(ctx)

        restored, created = persist_current_session(ctx, [make_item(3)])

        assert created is False
        assert restored.id == original.id
        assert restored.items == [make_item(3)]
        assert restored.logout_time is None

    def test_update_after_complete_is_not_found(self, ctx):
        persist_current_session(ctx, [make_item(1)])
        complete_current_session(ctx)

        with pytest.raises(OrderSessionNotFoundError):
            update_current_session(ctx, [make_item(2)])


class TestFetchOrRestore:
    def test_get_returns_active_session(self, ctx):
        created, _ = persist_current_session(ctx, [make_item(1)])

        session = get_current_session(ctx)

        assert session.id == created.id
        assert session.items == [make_item(1)]

    def test_get_restores_pending_logout_once(self, ctx):
        created, _ = persist_current_session(ctx, [make_item(1)])
        mark_current_session_pending_logout(ctx)

        restored = get_current_session(ctx)
        assert restored.id == created.id
        assert restored.status == "active"
        assert restored.logout_time is None
        assert restored.items == [make_item(1)]

        again = get_current_session(ctx)
        assert again.id == restored.id
        assert again.status == "active"
        assert again.updated_at == restored.updated_at
        assert again.items == restored.items

    def test_repeated_get_is_stable(self, ctx):
        persist_current_session(ctx, [make_item(1)])

        first = get_current_session(ctx)
        second = get_current_session(ctx)

        assert first == second

    def test_get_after_complete_returns_none(self, ctx):
        persist_current_session(ctx, [make_item(1)])
        complete_current_session(ctx)

        assert get_current_session(ctx) is None


class TestRequiresActiveSession:
    @pytest.mark.parametrize("operation", [
        mark_current_session_pending_logout,
        complete_current_session,
        assign_current_session_to_tab,
    ])
    def test_not_found_without_any_session(self, ctx, operation):
        with pytest.raises(OrderSessionNotFoundError):
            operation(ctx)

    def test_update_without_session_is_not_found(self, ctx):
        with pytest.raises(OrderSessionNotFoundError):
            update_current_session(ctx, [make_item(1)])

    def test_update_does_not_restore_parked_session(self, ctx):
        persist_current_session(ctx, [make_item(1)])
        mark_current_session_pending_logout(ctx)

        with pytest.raises(OrderSessionNotFoundError):
            update_current_session(ctx, [make_item(2)])

        parked = _rows(ctx.user_id, "pending_logout")
        assert len(parked) == 1
        assert _rows(ctx.user_id, "active") == []

    def test_logout_twice_is_not_found(self, ctx):
        persist_current_session(ctx, [make_item(1)])
        mark_current_session_pending_logout(ctx)

        with pytest.raises(OrderSessionNotFoundError):
            mark_current_session_pending_logout(ctx)

    def test_update_overwrites_active_items(self, ctx):
        created, _ = persist_current_session(ctx, [make_item(1)])

        updated = update_current_session(ctx, [make_item(2, quantity=3)])

        assert updated.id == created.id
        assert updated.items == [make_item(2, quantity=3)]


class TestFinalize:
    def test_complete_marks_payment(self, ctx):
        persist_current_session(ctx, [make_item(1)])

        completed = complete_current_session(ctx)

        assert completed.status == "completed"
        assert completed.completed_via == "payment"
        assert completed.items == [make_item(1)]

    def test_assign_tab_marks_tab(self, ctx):
        persist_current_session(ctx, [make_item(1)])

        completed = assign_current_session_to_tab(ctx)

        assert completed.status == "completed"
        assert completed.completed_via == "tab"

    def test_persist_after_complete_creates_new_row(self, ctx):
        old, _ = persist_current_session(ctx, [make_item(1)])
        complete_current_session(ctx)

        new, created = persist_current_session(ctx, [make_item(2)])

        assert created is True
        assert new.id != old.id
        assert len(_rows(ctx.user_id, "completed")) == 1
        assert len(_rows(ctx.user_id, "active")) == 1

    def test_completed_rows_are_kept_as_history(self, ctx):
        for n in range(3):
            persist_current_session(ctx, [make_item(n + 1)])
            complete_current_session(ctx)

        history = order_session_service.list_sessions(ctx.user_id)
        assert len(history) == 3
        assert all(s.status == "completed" for s in history)


class TestIsolationAndPreconditions:
    def test_sessions_are_per_user(self, ctx, other_cashier):
        other_ctx = RequestContext(user_id=other_cashier.id)
        mine, _ = persist_current_session(ctx, [make_item(1)])
        theirs, created = persist_current_session(other_ctx, [make_item(2)])

        assert created is True
        assert theirs.id != mine.id

        mark_current_session_pending_logout(other_ctx)
        assert get_current_session(ctx).items == [make_item(1)]
        assert _rows(ctx.user_id, "active")[0].id == mine.id

    @pytest.mark.parametrize("bad_ctx", [None, RequestContext(user_id=None)])
    def test_missing_identity_rejected_before_storage(self, db_session, monkeypatch, bad_ctx):
        def _fail(_func):
            raise AssertionError("storage must not be touched")

        monkeypatch.setattr(order_session_service, "run_in_transaction", _fail)

        with pytest.raises(UnauthenticatedError):
            get_current_session(bad_ctx)
        with pytest.raises(UnauthenticatedError):
            persist_current_session(bad_ctx, [make_item(1)])
        with pytest.raises(UnauthenticatedError):
            complete_current_session(bad_ctx)

    def test_unknown_user_is_unauthenticated(self, db_session):
        with pytest.raises(UnauthenticatedError):
            persist_current_session(RequestContext(user_id=999999), [make_item(1)])
        assert db.session.query(OrderSession).count() == 0

    def test_inactive_user_is_unauthenticated(self, ctx, cashier):
        cashier.is_active = False
        db.session.commit()

        with pytest.raises(UnauthenticatedError):
            get_current_session(ctx)


class TestStorageFailures:
    def test_failure_is_generic_and_logged(self, ctx, monkeypatch, caplog):
        def _boom(user_id, status):
            raise OperationalError("SELECT order_sessions", {}, Exception("disk I/O error"))

        monkeypatch.setattr(order_session_service, "_find_session", _boom)

        with caplog.at_level("ERROR"):
            with pytest.raises(OrderSessionStorageError) as exc_info:
                persist_current_session(ctx, [make_item(1)])

        assert str(exc_info.value) == "Failed to create/update order session"
        assert "disk I/O error" not in str(exc_info.value)
        assert "operation=persist_current_session" in caplog.text
        assert f"user_id={ctx.user_id}" in caplog.text
        assert "correlation_id=test-correlation" in caplog.text

    def test_failure_rolls_back_partial_write(self, ctx, monkeypatch):
        persist_current_session(ctx, [make_item(1)])
        mark_current_session_pending_logout(ctx)

        def _boom(items):
            raise OperationalError("UPDATE order_sessions", {}, Exception("database is locked"))

        monkeypatch.setattr(order_session_service, "encode_items", _boom)

        with pytest.raises(OrderSessionStorageError):
            persist_current_session(ctx, [make_item(2)])

        parked = _rows(ctx.user_id, "pending_logout")
        assert len(parked) == 1
        assert parked[0].logout_time is not None
        assert _rows(ctx.user_id, "active") == []

    def test_corrupted_items_read_as_empty_cart(self, ctx):
        created, _ = persist_current_session(ctx, [make_item(1)])
        row = db.session.query(OrderSession).filter_by(id=created.id).one()
        row.items = "{not json"
        db.session.commit()

        session = get_current_session(ctx)

        assert session.id == created.id
        assert session.items == []


class TestSerialization:
    def test_to_dict_uses_wire_shape(self, ctx):
        persist_current_session(ctx, [make_item(1)])
        parked = mark_current_session_pending_logout(ctx)

        data = parked.to_dict()

        assert set(data) == {
            "id", "userId", "items", "status",
            "createdAt", "updatedAt", "logoutTime", "completedVia",
        }
        assert data["userId"] == ctx.user_id
        assert data["items"] == [make_item(1)]
        assert data["createdAt"].endswith("Z")
        assert data["logoutTime"].endswith("Z")
        assert data["completedVia"] is None
