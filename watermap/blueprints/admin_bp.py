"""
WaterMap Catalog
Admin Blueprint — review queue, change log, user roles and statistics.

Endpoints (admin only):
    GET  /api/v1/admin/pending                — review queue, oldest first
    GET  /api/v1/admin/pending/<id>/diff      — pending row vs published row
    POST /api/v1/admin/approve/<id>           — publish (body: {notes?})
    POST /api/v1/admin/reject/<id>            — reject (body: {reason})
    GET  /api/v1/admin/change-logs            — ?canonical_id= &water_object_id=
    GET  /api/v1/admin/users                  — identity mirror
    PUT  /api/v1/admin/users/<id>/role        — body: {role}
    GET  /api/v1/admin/stats                  — dashboard counts
"""

from flask import Blueprint, jsonify, request

from watermap.auth import require_roles
from watermap.blueprints import current_user_id, json_body
from watermap.models.auth import REVIEWER_ROLES
from watermap.services import user_service
from watermap.services import water_object_lifecycle as lifecycle

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")

_admins = require_roles(*REVIEWER_ROLES)


# ═════════════════════════════════════════════════════════════════════════
# Review queue
# ═════════════════════════════════════════════════════════════════════════

@admin_bp.route("/pending", methods=["GET"])
@_admins
def list_pending():
    items = lifecycle.list_pending()
    return jsonify({"items": items, "total": len(items)}), 200


@admin_bp.route("/pending/<int:object_id>/diff", methods=["GET"])
@_admins
def pending_diff(object_id):
    return jsonify(lifecycle.get_diff(object_id)), 200


@admin_bp.route("/approve/<int:object_id>", methods=["POST"])
@_admins
def approve(object_id):
    notes = json_body().get("notes")
    result = lifecycle.approve_water_object(current_user_id(), object_id, notes=notes)
    return jsonify(result), 200


@admin_bp.route("/reject/<int:object_id>", methods=["POST"])
@_admins
def reject(object_id):
    reason = json_body().get("reason")
    result = lifecycle.reject_water_object(current_user_id(), object_id, reason)
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════
# Change log
# ═════════════════════════════════════════════════════════════════════════

@admin_bp.route("/change-logs", methods=["GET"])
@_admins
def change_logs():
    entries = lifecycle.list_change_log(
        canonical_id=request.args.get("canonical_id") or None,
        water_object_id=request.args.get("water_object_id", type=int),
    )
    return jsonify({"items": entries, "total": len(entries)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Users & stats
# ═════════════════════════════════════════════════════════════════════════

@admin_bp.route("/users", methods=["GET"])
@_admins
def list_users():
    users = user_service.list_users()
    return jsonify({"items": users, "total": len(users)}), 200


@admin_bp.route("/users/<int:user_id>/role", methods=["PUT"])
@_admins
def change_role(user_id):
    role = json_body().get("role")
    return jsonify(user_service.change_user_role(current_user_id(), user_id, role)), 200


@admin_bp.route("/stats", methods=["GET"])
@_admins
def stats():
    return jsonify(user_service.get_stats()), 200
