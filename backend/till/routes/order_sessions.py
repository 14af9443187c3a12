# Overview: Flask API routes for order sessions; parses input and returns JSON responses.

# backend/till/routes/order_sessions.py
"""
Order session API routes.

Every route works on the caller's own *current* session. There is no
session id in the URL: the authenticated user is always part of the
lookup, so a client holding a stale session id cannot address a row.

Status codes:
- 200 OK / 201 Created (POST when a new session row was inserted)
- 400 invalid items payload
- 401 no resolvable user
- 404 no active (or restorable) session
- 500 storage failure, generic message only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_session_service
from ..services.order_items import normalize_items
from ..services.order_session_service import (
    OrderSessionNotFoundError,
    OrderSessionStorageError,
    RequestContext,
    UnauthenticatedError,
)
from ..validation import ValidationError
from ..decorators import require_auth


order_sessions_bp = Blueprint("order_sessions", __name__, url_prefix="/api/order-sessions")


def _request_context() -> RequestContext:
    user = getattr(g, "current_user", None)
    return RequestContext(
        user_id=user.id if user else None,
        correlation_id=getattr(g, "correlation_id", None),
    )


def _items_from_body():
    data = request.get_json(silent=True)
    if data is None:
        # An unparseable body must not read as an empty cart
        if request.get_data().strip():
            raise ValidationError("Invalid JSON payload")
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return normalize_items(data.get("items"))


def _not_found():
    return jsonify({"error": "No active order session found"}), 404


def _unauthenticated():
    return jsonify({"error": "User not authenticated"}), 401


@order_sessions_bp.get("/current")
@require_auth
def get_current_session_route():
    """
    Get the caller's current session, restoring a parked one.

    Returns 404 when the user has no active or pending_logout session;
    the till treats that as an empty cart.
    """
    try:
        session = order_session_service.get_current_session(_request_context())
        if session is None:
            return _not_found()
        return jsonify(session.to_dict()), 200

    except UnauthenticatedError:
        return _unauthenticated()
    except OrderSessionStorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to fetch order session")
        return jsonify({"error": "Failed to fetch order session"}), 500


@order_sessions_bp.post("/current")
@require_auth
def persist_current_session_route():
    """
    Create or update the caller's session (restoring a parked one).

    Body: {"items": [...]}. An empty list sent while the session is
    parked keeps the parked items.
    """
    try:
        items = _items_from_body()
        session, created = order_session_service.persist_current_session(_request_context(), items)
        return jsonify(session.to_dict()), 201 if created else 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except UnauthenticatedError:
        return _unauthenticated()
    except OrderSessionStorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to create/update order session")
        return jsonify({"error": "Failed to create/update order session"}), 500


@order_sessions_bp.put("/current")
@require_auth
def update_current_session_route():
    """
    Overwrite the items of the caller's active session.

    Does not restore a parked session; returns 404 instead.
    """
    try:
        items = _items_from_body()
        session = order_session_service.update_current_session(_request_context(), items)
        return jsonify(session.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except UnauthenticatedError:
        return _unauthenticated()
    except OrderSessionNotFoundError:
        return _not_found()
    except OrderSessionStorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to update order session")
        return jsonify({"error": "Failed to update order session"}), 500


@order_sessions_bp.put("/current/logout")
@require_auth
def logout_current_session_route():
    """Park the caller's active session before the device logs out."""
    try:
        session = order_session_service.mark_current_session_pending_logout(_request_context())
        return jsonify(session.to_dict()), 200

    except UnauthenticatedError:
        return _unauthenticated()
    except OrderSessionNotFoundError:
        return _not_found()
    except OrderSessionStorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to mark order session for logout")
        return jsonify({"error": "Failed to mark order session for logout"}), 500


@order_sessions_bp.put("/current/complete")
@require_auth
def complete_current_session_route():
    """Mark the caller's active session completed once payment is taken."""
    try:
        session = order_session_service.complete_current_session(_request_context())
        return jsonify(session.to_dict()), 200

    except UnauthenticatedError:
        return _unauthenticated()
    except OrderSessionNotFoundError:
        return _not_found()
    except OrderSessionStorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to complete order session")
        return jsonify({"error": "Failed to complete order session"}), 500


@order_sessions_bp.put("/current/assign-tab")
@require_auth
def assign_current_session_to_tab_route():
    """Mark the caller's active session completed because it moved onto a tab."""
    try:
        session = order_session_service.assign_current_session_to_tab(_request_context())
        return jsonify(session.to_dict()), 200

    except UnauthenticatedError:
        return _unauthenticated()
    except OrderSessionNotFoundError:
        return _not_found()
    except OrderSessionStorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to assign order session to tab")
        return jsonify({"error": "Failed to assign order session to tab"}), 500
