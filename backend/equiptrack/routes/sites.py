# Overview: Site-scoped allocation views (current summary and cycle history).

from flask import Blueprint, jsonify, request

from ..services import allocation_query_service, history_service
from .allocations import as_of_arg
from .errors import error_response


sites_bp = Blueprint("sites", __name__, url_prefix="/api/sites")


def _location_key(allocation: dict) -> str:
    if allocation.get("construction_type") and allocation.get("lot_building_number"):
        return f"{allocation['construction_type']} {allocation['lot_building_number']}"
    return "unassigned"


@sites_bp.get("/<site_id>/allocations")
def site_allocations(site_id: str):
    """Units currently at a site, with counts and a lot/building grouping."""
    try:
        summary = allocation_query_service.get_site_allocation_summary(
            site_id, as_of_arg(request.args.get("as_of"))
        )
        by_location: dict = {}
        for allocation in summary["allocations"]:
            by_location.setdefault(_location_key(allocation), []).append(allocation)

        return jsonify({
            "site_id": summary["site_id"],
            "site_title": summary["site_title"],
            "summary": {
                "total_machines": summary["total_machines"],
                "machines_working": summary["machines_working"],
                "machines_in_downtime": summary["machines_in_downtime"],
            },
            "allocations": summary["allocations"],
            "allocations_by_location": by_location,
        }), 200
    except Exception as e:
        return error_response(e)


@sites_bp.get("/<site_id>/history")
def site_history(site_id: str):
    """Every past and ongoing allocation cycle that touched a site."""
    try:
        rows = history_service.list_historical_allocations(
            site_id, as_of_arg(request.args.get("as_of"))
        )
        return jsonify({
            "site_id": site_id,
            "allocations": [r.to_dict() for r in rows],
            "currently_at_site": sum(1 for r in rows if r.is_currently_at_site),
        }), 200
    except Exception as e:
        return error_response(e)
