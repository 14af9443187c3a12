# Overview: Service-layer operations for order sessions; encapsulates the cart lifecycle and its database work.

"""
Order Session Lifecycle Service

WHY: A cashier's in-progress cart has to survive logout/login on a shared
till without being lost, duplicated, or overwritten by a stale client.
The cart is parked server-side on logout and restored on the next login.

STATE MACHINE:
- (none)          -> active          first persist creates the row
- active          -> active          persist / explicit update overwrite items
- active          -> pending_logout  logout parks the cart (items untouched)
- pending_logout  -> active          fetch or persist restores it (merge rule)
- active          -> completed       payment or tab assignment (terminal)

INVARIANTS:
- At most one active and at most one pending_logout row per user
- Every state decision looks rows up by (user_id, status), never by a
  session id supplied by the client
- Every operation is one write transaction (see concurrency.py); a
  failure rolls everything back and nothing is retried here

MERGE RULE (restore via persist):
- Non-empty items replace the parked cart
- Empty items keep the parked cart. A client that was logged out
  involuntarily posts an empty cart before it has re-read the server
  copy; overwriting would lose the parked order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import OrderSession, User
from ..models.order_sessions import (
    COMPLETED_VIA_PAYMENT,
    COMPLETED_VIA_TAB,
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_PENDING_LOGOUT,
)
from ..time_utils import utcnow, to_utc_z
from .concurrency import lock_for_update, run_in_transaction
from .order_items import decode_items, encode_items


class OrderSessionError(Exception):
    """Raised for order session operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class UnauthenticatedError(OrderSessionError):
    """No resolvable user identity on the request."""


class OrderSessionNotFoundError(OrderSessionError):
    """The operation requires an active session and the user has none."""


class OrderSessionStorageError(OrderSessionError):
    """The database transaction failed. Message is generic."""


@dataclass(frozen=True)
class RequestContext:
    """
    Request-scoped values passed explicitly into every lifecycle call.

    user_id comes from the authentication layer (g.current_user) and
    correlation_id from the X-Correlation-ID header.
    """
    user_id: int | None
    correlation_id: str | None = None


@dataclass
class OrderSessionRecord:
    """Fully decoded order session, detached from the database session."""
    id: str
    user_id: int
    items: list[dict] = field(default_factory=list)
    status: str = STATUS_ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None
    logout_time: datetime | None = None
    completed_via: str | None = None

    @classmethod
    def from_model(cls, session: OrderSession) -> "OrderSessionRecord":
        return cls(
            id=session.id,
            user_id=session.user_id,
            items=decode_items(session.items, session_id=session.id),
            status=session.status,
            created_at=session.created_at,
            updated_at=session.updated_at,
            logout_time=session.logout_time,
            completed_via=session.completed_via,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "items": self.items,
            "status": self.status,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
            "logoutTime": to_utc_z(self.logout_time) if self.logout_time else None,
            "completedVia": self.completed_via,
        }


def _require_user_id(ctx: RequestContext | None) -> int:
    if ctx is None or ctx.user_id is None:
        raise UnauthenticatedError("User not authenticated")
    return ctx.user_id


def _lock_owner(user_id: int) -> User:
    """
    Lock the owning user row for the rest of the transaction.

    Serializes every lifecycle operation of one user on engines with row
    locks, including the create path where there is no session row yet.
    """
    user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
    if not user or not user.is_active:
        raise UnauthenticatedError("User not authenticated", details={"user_id": user_id})
    return user


def _find_session(user_id: int, status: str) -> OrderSession | None:
    return lock_for_update(
        db.session.query(OrderSession).filter_by(user_id=user_id, status=status)
    ).first()


def _require_active(user_id: int) -> OrderSession:
    session = _find_session(user_id, STATUS_ACTIVE)
    if not session:
        raise OrderSessionNotFoundError("No active order session found", details={"user_id": user_id})
    return session


def _restore(session: OrderSession, now: datetime) -> None:
    session.status = STATUS_ACTIVE
    session.logout_time = None
    session.updated_at = now


def _execute(operation: str, failure_message: str, ctx: RequestContext | None, func):
    """
    Resolve the user, then run func(user_id) in one write transaction.

    Database failures are logged with enough context to diagnose and
    re-raised as OrderSessionStorageError carrying only failure_message.
    """
    user_id = _require_user_id(ctx)

    def _op():
        _lock_owner(user_id)
        return func(user_id)

    try:
        return run_in_transaction(_op)
    except SQLAlchemyError as exc:
        current_app.logger.exception(
            "Order session storage failure operation=%s user_id=%s correlation_id=%s",
            operation, user_id, ctx.correlation_id,
        )
        raise OrderSessionStorageError(
            failure_message,
            details={"operation": operation},
        ) from exc


def _log(ctx: RequestContext, message: str, *args) -> None:
    current_app.logger.info(message + " correlation_id=%s", *args, ctx.correlation_id)


def get_current_session(ctx: RequestContext) -> OrderSessionRecord | None:
    """
    Fetch the user's current session, restoring a parked one if needed.

    Returns None when the user has neither an active nor a pending_logout
    session. Absence is not an error; the caller shows an empty cart.
    """
    def _op(user_id: int):
        session = _find_session(user_id, STATUS_ACTIVE)
        if session:
            current_app.logger.debug(
                "Found active order session session_id=%s user_id=%s", session.id, user_id
            )
            return OrderSessionRecord.from_model(session)

        session = _find_session(user_id, STATUS_PENDING_LOGOUT)
        if not session:
            current_app.logger.debug("No order session found user_id=%s", user_id)
            return None

        _restore(session, utcnow())
        db.session.flush()
        record = OrderSessionRecord.from_model(session)
        _log(ctx, "Restored order session to active session_id=%s user_id=%s items=%d",
             session.id, user_id, len(record.items))
        return record

    return _execute("get_current_session", "Failed to fetch order session", ctx, _op)


def persist_current_session(ctx: RequestContext, items: list[dict]) -> tuple[OrderSessionRecord, bool]:
    """
    Create, update, or restore the user's current session.

    Returns (session, created). created is True only when a new row was
    inserted; updates and restores return False.

    items must already be normalized (order_items.normalize_items).
    """
    items = list(items or [])

    def _op(user_id: int):
        now = utcnow()

        session = _find_session(user_id, STATUS_ACTIVE)
        if session:
            session.items = encode_items(items)
            session.updated_at = now
            db.session.flush()
            current_app.logger.debug(
                "Updated active order session session_id=%s user_id=%s items=%d",
                session.id, user_id, len(items),
            )
            return OrderSessionRecord.from_model(session), False

        session = _find_session(user_id, STATUS_PENDING_LOGOUT)
        if session:
            _restore(session, now)
            # Merge rule: an empty cart never overwrites a parked one
            if items:
                session.items = encode_items(items)
            db.session.flush()
            record = OrderSessionRecord.from_model(session)
            _log(ctx, "Restored order session via persist session_id=%s user_id=%s items=%d preserved=%s",
                 session.id, user_id, len(record.items), not items)
            return record, False

        session = OrderSession(
            user_id=user_id,
            items=encode_items(items),
            status=STATUS_ACTIVE,
            created_at=now,
            updated_at=now,
        )
        db.session.add(session)
        db.session.flush()
        _log(ctx, "Created order session session_id=%s user_id=%s items=%d",
             session.id, user_id, len(items))
        return OrderSessionRecord.from_model(session), True

    return _execute("persist_current_session", "Failed to create/update order session", ctx, _op)


def update_current_session(ctx: RequestContext, items: list[dict]) -> OrderSessionRecord:
    """
    Overwrite the items of the active session.

    Unlike persist, never restores a parked session: editing a cart the
    user has not reopened raises OrderSessionNotFoundError.
    """
    items = list(items or [])

    def _op(user_id: int):
        session = _require_active(user_id)
        session.items = encode_items(items)
        session.updated_at = utcnow()
        db.session.flush()
        return OrderSessionRecord.from_model(session)

    return _execute("update_current_session", "Failed to update order session", ctx, _op)


def mark_current_session_pending_logout(ctx: RequestContext) -> OrderSessionRecord:
    """Park the active session on logout. Items are left untouched."""
    def _op(user_id: int):
        session = _require_active(user_id)
        now = utcnow()
        session.status = STATUS_PENDING_LOGOUT
        session.logout_time = now
        session.updated_at = now
        db.session.flush()
        record = OrderSessionRecord.from_model(session)
        _log(ctx, "Marked order session pending_logout session_id=%s user_id=%s items=%d",
             session.id, user_id, len(record.items))
        return record

    return _execute(
        "mark_current_session_pending_logout",
        "Failed to mark order session for logout",
        ctx,
        _op,
    )


def _finalize(ctx: RequestContext, completed_via: str, operation: str, failure_message: str) -> OrderSessionRecord:
    def _op(user_id: int):
        session = _require_active(user_id)
        session.status = STATUS_COMPLETED
        session.completed_via = completed_via
        session.updated_at = utcnow()
        db.session.flush()
        _log(ctx, "Completed order session session_id=%s user_id=%s via=%s",
             session.id, user_id, completed_via)
        return OrderSessionRecord.from_model(session)

    return _execute(operation, failure_message, ctx, _op)


def complete_current_session(ctx: RequestContext) -> OrderSessionRecord:
    """
    Finalize the active session after payment.

    The row becomes history; the next persist for this user creates a new one.
    """
    return _finalize(ctx, COMPLETED_VIA_PAYMENT, "complete_current_session", "Failed to complete order session")


def assign_current_session_to_tab(ctx: RequestContext) -> OrderSessionRecord:
    """Finalize the active session because its cart was moved onto a tab."""
    return _finalize(ctx, COMPLETED_VIA_TAB, "assign_current_session_to_tab", "Failed to assign order session to tab")


def list_sessions(user_id: int, status: str | None = None, limit: int = 50) -> list[OrderSessionRecord]:
    """Read-only history of a user's sessions, newest first. Used by the CLI."""
    query = db.session.query(OrderSession).filter_by(user_id=user_id)
    if status:
        query = query.filter_by(status=status)
    sessions = query.order_by(OrderSession.updated_at.desc()).limit(limit).all()
    return [OrderSessionRecord.from_model(s) for s in sessions]
