# backend/channelstock/routes/closeout.py
"""
Close-out reconciliation API routes (EVENT channels).
"""
from flask import Blueprint, jsonify

from ..request_utils import get_actor, json_body
from ..services import closeout_service

closeout_bp = Blueprint("closeout", __name__, url_prefix="/api/channels")


@closeout_bp.route("/<int:channel_id>/close-stock", methods=["POST"])
def close_channel_stock(channel_id: int):
    """
    Record damaged/missing per barcode and move the channel to pending_return.

    Request body:
    {
        "items": [{"barcode": str, "damaged": int, "missing": int}, ...]
    }

    Barcodes left out are recorded with damaged = missing = 0. Values larger
    than the remaining stock are clamped and reported in "warnings".

    Returns:
        200: {"channel": ..., "entries": [...], "warnings": [...], "totals": {...}}
        400: Invalid input or not an EVENT channel
        409: Channel is not active
    """
    data = json_body()
    result = closeout_service.close_channel_stock(channel_id, data.get("items"), actor=get_actor(data))
    return jsonify(result.to_dict()), 200


@closeout_bp.route("/<int:channel_id>/closeout", methods=["GET"])
def get_closeout(channel_id: int):
    entries = closeout_service.get_closeout(channel_id)
    return jsonify({
        "channel_id": channel_id,
        "entries": [e.to_dict() for e in entries],
        "totals": {
            "remaining": sum(e.remaining for e in entries),
            "damaged": sum(e.damaged for e in entries),
            "missing": sum(e.missing for e in entries),
            "returned": sum(e.returned for e in entries),
        },
    }), 200
