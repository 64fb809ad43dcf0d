"""
GeoJSON validation for water object geometry.

Checks, in one pass, collecting every error:
  1. Input is a JSON object; Feature / FeatureCollection unwrap to a geometry
  2. Geometry type matches the object type (ALLOWED_GEOMETRY_TYPES)
  3. Every coordinate is a pair of finite numbers
  4. Every coordinate lies inside the Kazakhstan bounding box

Pure functions, no DB or app context.  Safe to call from anywhere.

Usage:
    from watermap.services.geometry_validator import validate_geojson

    result = validate_geojson(payload["geometry"], "lake")
    if not result["valid"]:
        ...  # result["errors"] lists every problem
    geometry = result["geometry"]   # bare Geometry, ready to store
"""

import math
from numbers import Real

ALLOWED_GEOMETRY_TYPES = {
    "river": ("LineString", "MultiLineString"),
    "canal": ("LineString", "MultiLineString"),
    "lake": ("Polygon", "MultiPolygon"),
    "reservoir": ("Polygon", "MultiPolygon"),
    "glacier": ("Polygon", "MultiPolygon"),
    "spring": ("Point",),
}

# [min_lng, min_lat, max_lng, max_lat]
KZ_BBOX = (46.49, 40.57, 87.36, 55.44)


class CoordinateStructureError(ValueError):
    """Coordinates are not nested the way the geometry type requires."""


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def _flatten_once(items, geom_type: str) -> list:
    if not isinstance(items, list):
        raise CoordinateStructureError(f"{geom_type} coordinates must be an array")
    flat = []
    for item in items:
        if isinstance(item, list):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def flatten_coordinates(coords, geom_type: str) -> list:
    """
    Reduce nested coordinates to a flat list of positions.

    Point → [coords];  LineString / MultiPoint → as-is;
    Polygon / MultiLineString → one level;  MultiPolygon → two levels.
    Unknown types pass through unchanged, but must still be an array.

    Raises:
        CoordinateStructureError: if a level that must be an array is not.
    """
    if geom_type == "Point":
        return [coords]
    if geom_type in ("LineString", "MultiPoint"):
        if not isinstance(coords, list):
            raise CoordinateStructureError(f"{geom_type} coordinates must be an array")
        return coords
    if geom_type in ("Polygon", "MultiLineString"):
        return _flatten_once(coords, geom_type)
    if geom_type == "MultiPolygon":
        return _flatten_once(_flatten_once(coords, geom_type), geom_type)
    if not isinstance(coords, list):
        raise CoordinateStructureError(f"{geom_type} coordinates must be an array")
    return coords


def extract_geometry(geojson) -> tuple[dict | None, str | None]:
    """
    Unwrap a Feature or FeatureCollection to its geometry.

    Returns:
        (geometry, None) on success, (None, error_message) otherwise.
    """
    if not isinstance(geojson, dict):
        return None, "Invalid GeoJSON structure"

    if geojson.get("type") == "Feature":
        geometry = geojson.get("geometry")
    elif geojson.get("type") == "FeatureCollection":
        features = geojson.get("features")
        if not isinstance(features, list) or not features:
            return None, "FeatureCollection is empty"
        first = features[0]
        geometry = first.get("geometry") if isinstance(first, dict) else None
    else:
        geometry = geojson

    if not isinstance(geometry, dict) or not geometry.get("type") or not geometry.get("coordinates"):
        return None, "Missing geometry or coordinates"
    return geometry, None


def validate_geojson(geojson, object_type: str) -> dict:
    """
    Validate GeoJSON geometry for a water object of *object_type*.

    Args:
        geojson: Bare Geometry, Feature, or FeatureCollection (first feature used).
        object_type: One of ALLOWED_GEOMETRY_TYPES' keys.

    Returns:
        {"valid": bool, "errors": [str], "geometry": dict | None}
        ``geometry`` is the unwrapped bare geometry (None on structural failure).
    """
    geometry, error = extract_geometry(geojson)
    if error:
        return {"valid": False, "errors": [error], "geometry": None}

    errors = []
    geom_type = geometry["type"]

    allowed = ALLOWED_GEOMETRY_TYPES.get(object_type)
    if allowed is None:
        errors.append(f"Unknown object type: {object_type}")
    elif geom_type not in allowed:
        errors.append(
            f'Invalid geometry type "{geom_type}" for object type "{object_type}". '
            f"Allowed: {', '.join(allowed)}"
        )

    try:
        positions = flatten_coordinates(geometry["coordinates"], geom_type)
        min_lng, min_lat, max_lng, max_lat = KZ_BBOX
        outside = False
        for position in positions:
            if (
                not isinstance(position, list)
                or len(position) < 2
                or not _is_number(position[0])
                or not _is_number(position[1])
            ):
                errors.append("Coordinates must be numbers")
                break
            lng, lat = position[0], position[1]
            if not (min_lng <= lng <= max_lng and min_lat <= lat <= max_lat):
                outside = True
        if outside:
            errors.append("Some coordinates are outside Kazakhstan boundaries")
    except (CoordinateStructureError, TypeError) as exc:
        errors.append(f"Invalid coordinate structure: {exc}")

    return {"valid": not errors, "errors": errors, "geometry": geometry}


def calculate_centroid(geometry) -> list[float] | None:
    """
    Approximate centroid (arithmetic mean of all positions), for display only.

    Returns [lng, lat], or None on any structural problem.  Never raises.
    """
    try:
        positions = flatten_coordinates(geometry["coordinates"], geometry["type"])
        if not positions:
            return None
        sum_lng = sum_lat = 0.0
        for position in positions:
            lng, lat = position[0], position[1]
            if not _is_number(lng) or not _is_number(lat):
                return None
            sum_lng += lng
            sum_lat += lat
        return [sum_lng / len(positions), sum_lat / len(positions)]
    except (CoordinateStructureError, KeyError, IndexError, TypeError):
        return None
