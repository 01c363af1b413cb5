# Overview: HTTP endpoints for derived allocation state, cost estimates and cache sync.

"""
Allocation API routes.

Thin layer: parse query/body, call the services, serialize. All state comes
from the approved event log; nothing here reads Machine.status.
"""

from flask import Blueprint, jsonify, request

from ..time_utils import normalize_datetime
from ..validation import ValidationError
from ..services import (
    allocation_query_service,
    financial_service,
    state_service,
    sync_service,
)
from .errors import error_response


allocations_bp = Blueprint("allocations", __name__, url_prefix="/api/allocations")


def as_of_arg(value):
    """Query-string reference time; None means now."""
    if value in (None, ""):
        return None
    try:
        return normalize_datetime(value)
    except ValueError:
        raise ValidationError("as_of must be an ISO-8601 datetime")


def _flag(value, default: bool) -> bool:
    """Query-string or JSON boolean; "false"/"0"/"no" read as False."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@allocations_bp.get("/active")
def list_active():
    """
    Every unit/extension with an open allocation, a transit, a downtime or a site.

    Query params:
        include_downtimes: bool (default true)
        as_of: ISO-8601 reference time (default now)
    """
    try:
        allocations = allocation_query_service.list_active_allocations(
            as_of_arg(request.args.get("as_of")),
            include_downtimes=_flag(request.args.get("include_downtimes"), True),
        )
        return jsonify({
            "allocations": [a.to_dict() for a in allocations],
            "count": len(allocations),
        }), 200
    except Exception as e:
        return error_response(e)


@allocations_bp.get("/downtimes")
def list_downtimes():
    try:
        downtimes = allocation_query_service.list_active_downtimes(
            unit_id=request.args.get("unit_id") or None,
            as_of=as_of_arg(request.args.get("as_of")),
        )
        return jsonify({"downtimes": [d.to_dict() for d in downtimes]}), 200
    except Exception as e:
        return error_response(e)


@allocations_bp.get("/transports")
def list_transports():
    try:
        transports = allocation_query_service.list_active_transports(
            as_of_arg(request.args.get("as_of"))
        )
        return jsonify({"transports": [t.to_dict() for t in transports]}), 200
    except Exception as e:
        return error_response(e)


@allocations_bp.get("/units/<unit_id>/state")
def unit_state(unit_id: str):
    try:
        state = state_service.compute_state(unit_id, as_of_arg(request.args.get("as_of")))
        return jsonify(state.to_dict()), 200
    except Exception as e:
        return error_response(e)


@allocations_bp.get("/units/<unit_id>/cost")
def unit_cost(unit_id: str):
    """
    Query params:
        period_start, period_end: inclusive calendar days (YYYY-MM-DD)
    """
    try:
        period_start = request.args.get("period_start")
        period_end = request.args.get("period_end")
        if not period_start or not period_end:
            raise ValidationError("period_start and period_end are required")
        calc = financial_service.estimate_allocation_cost(unit_id, period_start, period_end)
        return jsonify(calc.to_dict()), 200
    except Exception as e:
        return error_response(e)


@allocations_bp.route("/calculate", methods=["GET", "POST"])
def calculate():
    """
    GET previews fleet cost estimates; POST persists them as snapshots.

    Params (query for GET, JSON body for POST):
        period_start, period_end (required), site_id, supplier_id,
        regenerate (POST only)
    """
    try:
        params = request.args if request.method == "GET" else (request.get_json(silent=True) or {})
        period_start = params.get("period_start")
        period_end = params.get("period_end")
        if not period_start or not period_end:
            raise ValidationError("period_start and period_end are required")

        filters = {
            "site_id": params.get("site_id") or None,
            "supplier_id": params.get("supplier_id") or None,
        }

        if request.method == "GET":
            calcs = financial_service.preview_financial_snapshots(period_start, period_end, **filters)
            return jsonify({
                "preview": True,
                "calculations": [c.to_dict() for c in calcs],
            }), 200

        result = financial_service.generate_financial_snapshots(
            period_start,
            period_end,
            regenerate=_flag(params.get("regenerate"), False),
            **filters,
        )
        return jsonify(result), 201
    except Exception as e:
        return error_response(e)


@allocations_bp.post("/sync")
def sync():
    """
    Refresh the derived-state cache.

    Body: {"unit_id": str} | {"extension_id": str} | {} (everything)
    """
    try:
        data = request.get_json(silent=True) or {}
        unit_id = data.get("unit_id")
        extension_id = data.get("extension_id")
        if unit_id or extension_id:
            result = sync_service.sync_derived_state(unit_id=unit_id, extension_id=extension_id)
        else:
            result = sync_service.sync_all_states()
        return jsonify(result.to_dict()), 200 if result.success else 500
    except Exception as e:
        return error_response(e)
