# backend/channelstock/routes/channels.py
"""
Sales channel API routes: creation, approval, activation, return and payment.

Domain errors (validation, invalid transition, not found, conflicts) are
translated to JSON by the app-level ChannelStockError handler.
"""
from flask import Blueprint, jsonify, request

from ..request_utils import get_actor, json_body
from ..services import audit_service, channel_service, ledger_service, stock_request_service

channels_bp = Blueprint("channels", __name__, url_prefix="/api/channels")


@channels_bp.route("", methods=["POST"])
def create_channel():
    """
    Create a channel and its INITIAL stock request.

    Request body:
    {
        "type": "EVENT" | "BRANCH",
        "name": str,
        "initial_quantity": int,
        "location": str (optional),
        "start_date": "YYYY-MM-DD" (EVENT only),
        "end_date": "YYYY-MM-DD" (EVENT only),
        "sales_target_cents": int (optional),
        "responsible_person_name": str (optional),
        "phone": str (optional),
        "staff": [{"staff_id": str, "is_main": bool}] (optional),
        "notes": str (optional)
    }

    Returns:
        201: Channel created
        400: Invalid request
    """
    data = json_body()

    try:
        channel = channel_service.create_channel(
            data["type"],
            data["name"],
            initial_quantity=data["initial_quantity"],
            location=data.get("location"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            sales_target_cents=data.get("sales_target_cents"),
            responsible_person_name=data.get("responsible_person_name"),
            phone=data.get("phone"),
            staff=data.get("staff"),
            notes=data.get("notes"),
            actor=get_actor(data),
        )
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400

    return jsonify(_channel_payload(channel)), 201


def _channel_payload(channel) -> dict:
    data = channel.to_dict()
    data["stock_requests"] = [r.to_dict() for r in channel.stock_requests]
    return data


@channels_bp.route("", methods=["GET"])
def list_channels():
    channels = channel_service.list_channels(
        status=request.args.get("status"),
        channel_type=request.args.get("type"),
    )
    return jsonify({"channels": [c.to_dict() for c in channels]}), 200


@channels_bp.route("/<int:channel_id>", methods=["GET"])
def get_channel(channel_id: int):
    return jsonify(_channel_payload(channel_service.get_channel(channel_id))), 200


@channels_bp.route("/<int:channel_id>", methods=["PATCH"])
def update_channel(channel_id: int):
    """
    Edit a draft/submitted channel.

    Any subset of the creation fields (except type), plus "staff" (replaces
    all assignments) and "initial_quantity".
    """
    data = json_body()
    actor = get_actor(data)
    fields = {k: v for k, v in data.items() if k != "actor"}
    channel = channel_service.update_channel(channel_id, fields, actor=actor)
    return jsonify(_channel_payload(channel)), 200


@channels_bp.route("/<int:channel_id>/submit", methods=["POST"])
def submit_channel(channel_id: int):
    channel = channel_service.submit_channel(channel_id, actor=get_actor(json_body()))
    return jsonify(channel.to_dict()), 200


@channels_bp.route("/<int:channel_id>/approve", methods=["POST"])
def approve_channel(channel_id: int):
    channel = channel_service.approve_channel(channel_id, actor=get_actor(json_body()))
    return jsonify(channel.to_dict()), 200


@channels_bp.route("/<int:channel_id>/cancel", methods=["POST"])
def cancel_channel(channel_id: int):
    """Cancel a pre-active channel. Body: {"reason": str (optional)}"""
    data = json_body()
    channel = channel_service.cancel_channel(channel_id, data.get("reason"), actor=get_actor(data))
    return jsonify(_channel_payload(channel)), 200


@channels_bp.route("/<int:channel_id>/activate", methods=["POST"])
def activate_channel(channel_id: int):
    """
    approved -> active. Requires the INITIAL request to be received.

    Receiving the INITIAL request activates the channel on its own; this
    endpoint exists for replays and repairs.
    """
    channel = channel_service.activate_channel(channel_id, actor=get_actor(json_body()))
    return jsonify(channel.to_dict()), 200


@channels_bp.route("/<int:channel_id>/topup-requests", methods=["POST"])
def create_topup_request(channel_id: int):
    """
    Request more stock for an active channel.

    Request body:
    {
        "quantity": int,
        "notes": str (optional)
    }

    Returns:
        201: TOPUP request created (status draft)
        400: Invalid request
        409: Channel is not active
    """
    data = json_body()
    try:
        req = stock_request_service.create_topup_request(
            channel_id,
            data["quantity"],
            notes=data.get("notes"),
            actor=get_actor(data),
        )
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400

    return jsonify(req.to_dict()), 201


@channels_bp.route("/<int:channel_id>/stock", methods=["GET"])
def get_channel_stock(channel_id: int):
    """Per-barcode ledger: received, sold, remaining."""
    channel = channel_service.get_channel(channel_id)
    rows = ledger_service.get_channel_stock(channel.id)
    return jsonify({
        "channel_id": channel.id,
        "items": [row.to_dict() for row in rows],
        "totals": {
            "received": sum(r.received for r in rows),
            "sold": sum(r.sold for r in rows),
            "remaining": sum(r.remaining for r in rows),
        },
    }), 200


@channels_bp.route("/<int:channel_id>/logs", methods=["GET"])
def get_channel_logs(channel_id: int):
    channel = channel_service.get_channel(channel_id)
    entries = audit_service.get_channel_log(channel.id)
    return jsonify({"logs": [e.to_dict() for e in entries]}), 200


# ------------------------------------------------------------------------------
# Return and payment flow
# ------------------------------------------------------------------------------

@channels_bp.route("/<int:channel_id>/return-shipment", methods=["POST"])
def create_return_shipment(channel_id: int):
    """
    Ship the closed-out stock back (pending_return -> returning).

    Request body:
    {
        "provider": str,
        "tracking_number": str (optional)
    }
    """
    data = json_body()
    try:
        shipment = channel_service.create_return_shipment(
            channel_id,
            data["provider"],
            data.get("tracking_number"),
            actor=get_actor(data),
        )
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400

    return jsonify(shipment.to_dict()), 201


@channels_bp.route("/<int:channel_id>/confirm-return", methods=["POST"])
def confirm_return_received(channel_id: int):
    channel = channel_service.confirm_return_received(channel_id, actor=get_actor(json_body()))
    return jsonify(channel.to_dict()), 200


@channels_bp.route("/<int:channel_id>/complete", methods=["POST"])
def close_channel_manual(channel_id: int):
    channel = channel_service.close_channel_manual(channel_id, actor=get_actor(json_body()))
    return jsonify(channel.to_dict()), 200


@channels_bp.route("/<int:channel_id>/submit-payment", methods=["POST"])
def submit_for_payment_approval(channel_id: int):
    channel = channel_service.submit_for_payment_approval(channel_id, actor=get_actor(json_body()))
    return jsonify(channel.to_dict()), 200


@channels_bp.route("/<int:channel_id>/approve-payment", methods=["POST"])
def approve_payment(channel_id: int):
    channel = channel_service.approve_payment(channel_id, actor=get_actor(json_body()))
    return jsonify(channel.to_dict()), 200
