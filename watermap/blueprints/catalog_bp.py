"""
WaterMap Catalog
Public Catalog Blueprint — read-only GeoJSON views of published water objects.

Endpoints:
    GET /api/v1/water-objects[?type=]                   — FeatureCollection (public)
    GET /api/v1/water-objects/<canonical_id>            — one Feature (public)
    GET /api/v1/water-objects/<canonical_id>/history    — every version (authenticated)
"""

from flask import Blueprint, jsonify, request

from watermap.auth import require_auth
from watermap.services import catalog_service

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/v1")


@catalog_bp.route("/water-objects", methods=["GET"])
def list_water_objects():
    """All published water objects, optionally filtered by ``type``."""
    object_type = request.args.get("type") or None
    return jsonify(catalog_service.list_published(object_type)), 200


@catalog_bp.route("/water-objects/<canonical_id>", methods=["GET"])
def get_water_object(canonical_id):
    return jsonify(catalog_service.get_published(canonical_id)), 200


@catalog_bp.route("/water-objects/<canonical_id>/history", methods=["GET"])
@require_auth
def get_water_object_history(canonical_id):
    history = catalog_service.get_history(canonical_id)
    return jsonify({"canonical_id": canonical_id, "versions": history, "total": len(history)}), 200
