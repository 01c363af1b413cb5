# Overview: HTTP endpoints for recording and reviewing allocation events.

from flask import Blueprint, jsonify, request

from ..validation import ValidationError
from ..services import event_service
from .errors import error_response


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


@events_bp.post("")
def create_event():
    """
    Record a new PENDING event.

    Request body: event fields (event_type, unit_id/extension_id, event_date,
    created_by, plus whatever the event type needs).

    Returns:
        201: Event created
        400: Invalid payload or business-rule violation (with "code")
        404: Referenced unit/extension/site not found
    """
    try:
        event = event_service.create_event(request.get_json(silent=True))
        return jsonify(event.to_dict()), 201
    except Exception as e:
        return error_response(e)


@events_bp.post("/validate")
def validate_event():
    """Dry-run validation; always 200 with {valid, reason, code} for rule checks."""
    try:
        result = event_service.validate_candidate(request.get_json(silent=True))
        return jsonify(result.to_dict()), 200
    except Exception as e:
        return error_response(e)


@events_bp.get("")
def list_events():
    try:
        events = event_service.list_events(
            unit_id=request.args.get("unit_id") or None,
            status=request.args.get("status") or None,
        )
        return jsonify({"events": [e.to_dict() for e in events]}), 200
    except Exception as e:
        return error_response(e)


@events_bp.post("/<int:event_id>/approve")
def approve_event(event_id: int):
    """
    Request body:
    {
        "approved_by": str,
        "expected_holder_unit_id": str (optional, extension events)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        event = event_service.approve_event(
            event_id,
            approved_by=data.get("approved_by"),
            expected_holder_unit_id=data.get("expected_holder_unit_id"),
        )
        return jsonify(event.to_dict()), 200
    except Exception as e:
        return error_response(e)


@events_bp.post("/<int:event_id>/reject")
def reject_event(event_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("rejected_by"):
            raise ValidationError("rejected_by is required")
        event = event_service.reject_event(
            event_id,
            rejected_by=data["rejected_by"],
            reason=data.get("reason"),
        )
        return jsonify(event.to_dict()), 200
    except Exception as e:
        return error_response(e)
