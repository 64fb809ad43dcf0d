"""
WaterMap Catalog
Blueprint helpers.
"""

from flask import g, request

from watermap.core.exceptions import ValidationError


def json_body() -> dict:
    """The request's JSON object body; an empty dict when there is no body."""
    if not request.data:
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def current_user_id() -> int:
    return g.current_user.id
