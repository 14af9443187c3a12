from __future__ import annotations

import uuid

from ..extensions import db


STATUS_ACTIVE = "active"
STATUS_PENDING_LOGOUT = "pending_logout"
STATUS_COMPLETED = "completed"

STATUSES = (STATUS_ACTIVE, STATUS_PENDING_LOGOUT, STATUS_COMPLETED)

COMPLETED_VIA_PAYMENT = "payment"
COMPLETED_VIA_TAB = "tab"


def _new_session_id() -> str:
    return str(uuid.uuid4())


class OrderSession(db.Model):
    """
    A user's in-progress cart plus its lifecycle status.

    WHY: The cart must survive logout/login on a shared till. Instead of
    living only in the client, it is parked server-side (pending_logout)
    and restored on the next login.

    LIFECYCLE:
    - active: the single mutable cart of a user
    - pending_logout: parked on logout, items preserved
    - completed: handed off to payment or a tab (terminal, kept for audit)

    INVARIANT: at most one active and at most one pending_logout row per
    user. The partial unique indexes back up the transactional checks in
    order_session_service.

    items holds the JSON-encoded order lines; only order_session_service
    reads or writes it (see services/order_items.py for the codec).
    """
    __tablename__ = "order_sessions"
    __table_args__ = (
        db.Index("ix_order_sessions_user_status", "user_id", "status"),
        db.Index(
            "uq_order_sessions_user_active",
            "user_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index(
            "uq_order_sessions_user_pending_logout",
            "user_id",
            unique=True,
            sqlite_where=db.text("status = 'pending_logout'"),
            postgresql_where=db.text("status = 'pending_logout'"),
        ),
        db.CheckConstraint(
            "status IN ('active', 'pending_logout', 'completed')",
            name="ck_order_sessions_status",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_session_id)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    # JSON-encoded list of order lines
    items = db.Column(db.Text, nullable=False, default="[]")

    status = db.Column(db.String(16), nullable=False, default=STATUS_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    logout_time = db.Column(db.DateTime(timezone=True), nullable=True)

    # Audit: how a completed session left the till (payment or tab)
    completed_via = db.Column(db.String(16), nullable=True)

    user = db.relationship("User", backref=db.backref("order_sessions", lazy=True))
