# Overview: Helpers shared by the JSON blueprints.

from __future__ import annotations

from flask import request

from .errors import ValidationError
from .validation import optional_str


def json_body() -> dict:
    """Request JSON as a dict; an absent body is an empty dict."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def get_actor(data: dict | None = None) -> str | None:
    """
    Who is acting, for audit rows only.

    Taken from the body's "actor" field, else the X-Actor header. Nothing
    is authenticated or authorized here.
    """
    actor = (data or {}).get("actor") or request.headers.get("X-Actor")
    return optional_str(actor, "actor", max_length=128)


def query_int(name: str) -> int | None:
    value = request.args.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None
