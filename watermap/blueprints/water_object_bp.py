"""
WaterMap Catalog
Water Object Blueprint — expert drafting workflow.

Endpoints (expert or admin):
    GET    /api/v1/water-objects/my/drafts[?status=]         — own working rows
    POST   /api/v1/water-objects                             — create draft
    PUT    /api/v1/water-objects/<id>                        — partial update
    POST   /api/v1/water-objects/<id>/submit                 — send to review
    DELETE /api/v1/water-objects/<id>                        — remove non-published row
    POST   /api/v1/water-objects/<canonical_id>/revisions    — open a new version

Business rules live in water_object_lifecycle; errors are mapped to HTTP
responses by watermap.blueprints.errors.
"""

from flask import Blueprint, jsonify, request

from watermap.auth import require_roles
from watermap.blueprints import current_user_id, json_body
from watermap.core.exceptions import ValidationError
from watermap.models.auth import EDITOR_ROLES
from watermap.models.water_object import OWNER_WORKING_STATUSES
from watermap.services import water_object_lifecycle as lifecycle

water_object_bp = Blueprint("water_objects", __name__, url_prefix="/api/v1")

_editors = require_roles(*EDITOR_ROLES)


@water_object_bp.route("/water-objects/my/drafts", methods=["GET"])
@_editors
def my_drafts():
    """The caller's draft, pending and rejected rows.

    Query params:
        status — narrow to one of draft | pending | rejected
    """
    status = request.args.get("status")
    if status and status not in OWNER_WORKING_STATUSES:
        raise ValidationError(
            "Invalid status filter",
            errors=[f"status must be one of: {', '.join(OWNER_WORKING_STATUSES)}"],
        )
    statuses = (status,) if status else OWNER_WORKING_STATUSES
    items = lifecycle.list_by_owner(current_user_id(), statuses)
    return jsonify({"items": items, "total": len(items)}), 200


@water_object_bp.route("/water-objects", methods=["POST"])
@_editors
def create_water_object():
    """Create a draft.

    Body: {name_kz, object_type, geometry, name_ru?, name_en?, length_km?, ...}
    """
    result = lifecycle.create_water_object(current_user_id(), json_body())
    return jsonify(result), 201


@water_object_bp.route("/water-objects/<int:object_id>", methods=["PUT"])
@_editors
def update_water_object(object_id):
    """Partial update: absent or null fields keep their stored value."""
    result = lifecycle.update_water_object(current_user_id(), object_id, json_body())
    return jsonify(result), 200


@water_object_bp.route("/water-objects/<int:object_id>/submit", methods=["POST"])
@_editors
def submit_water_object(object_id):
    result = lifecycle.submit_water_object(current_user_id(), object_id)
    return jsonify(result), 200


@water_object_bp.route("/water-objects/<int:object_id>", methods=["DELETE"])
@_editors
def delete_water_object(object_id):
    result = lifecycle.delete_water_object(current_user_id(), object_id)
    return jsonify(result), 200


@water_object_bp.route("/water-objects/<canonical_id>/revisions", methods=["POST"])
@_editors
def revise_water_object(canonical_id):
    """Open a new draft version copied from the published row."""
    result = lifecycle.revise_water_object(current_user_id(), canonical_id)
    return jsonify(result), 201
