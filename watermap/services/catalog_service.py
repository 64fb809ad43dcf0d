"""
Public catalog — read-only views over published water objects.

Only rows with status = published are ever returned by ``list_published``
and ``get_published``; drafts, pending, rejected and archived rows are
invisible to the public.  ``get_history`` is the exception: it lists every
version of a canonical_id and is served to authenticated users only.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from watermap.core.exceptions import NotFoundError
from watermap.models.water_object import STATUS_PUBLISHED, WaterObject
from watermap.services import water_object_store as store
from watermap.services.geometry_validator import calculate_centroid
from watermap.services.water_object_lifecycle import validate_object_type

logger = logging.getLogger(__name__)


def list_published(object_type: str | None = None) -> dict:
    """
    Every published water object as a GeoJSON FeatureCollection.

    Args:
        object_type: Optional filter; must be a known object type.

    Returns:
        {"type": "FeatureCollection", "features": [...],
         "metadata": {"total": int, "fetched_at": iso8601}}
    """
    validate_object_type(object_type)

    rows = store.list_by_status(
        STATUS_PUBLISHED,
        object_type=object_type,
        order_by=(WaterObject.name_kz.asc(), WaterObject.id.asc()),
    )
    features = [row.to_feature(centroid=calculate_centroid(row.geometry)) for row in rows]

    logger.debug("Catalog listing type=%s returned %d features", object_type, len(features))
    return {
        "type": "FeatureCollection",
        "features": features,
        "metadata": {
            "total": len(features),
            "fetched_at": datetime.now(timezone.utc).isoformat(),
        },
    }


def get_published(canonical_id: str) -> dict:
    """The published Feature for *canonical_id*, or NotFoundError."""
    row = store.get_by_canonical_id_and_status(canonical_id, STATUS_PUBLISHED)
    if row is None:
        raise NotFoundError(resource="Published WaterObject", resource_id=canonical_id)
    return row.to_feature(centroid=calculate_centroid(row.geometry))


def get_history(canonical_id: str) -> list[dict]:
    """Every version of *canonical_id*, newest version first, without geometry."""
    rows = store.list_versions(canonical_id)
    if not rows:
        raise NotFoundError(resource="WaterObject lineage", resource_id=canonical_id)

    history = []
    for row in rows:
        d = row.to_dict()
        d.pop("geometry")
        d["created_by_name"] = row.creator.name if row.creator else None
        history.append(d)
    return history
