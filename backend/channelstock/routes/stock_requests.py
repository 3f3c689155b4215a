# backend/channelstock/routes/stock_requests.py
"""
Stock request pipeline API routes.

Approval (channel side), allocation / packing / shipping (warehouse side)
and receiving (channel side). Every call is one state-machine step.
"""
from flask import Blueprint, jsonify, request

from ..request_utils import get_actor, json_body, query_int
from ..services import stock_request_service

stock_requests_bp = Blueprint("stock_requests", __name__, url_prefix="/api/stock-requests")


@stock_requests_bp.route("", methods=["GET"])
def list_requests():
    """
    Warehouse queues.

    Query params:
        status: repeatable (?status=approved&status=allocated)
        channel_id: int (optional)
    """
    reqs = stock_request_service.list_requests(
        status=request.args.getlist("status") or None,
        channel_id=query_int("channel_id"),
    )
    return jsonify({"stock_requests": [r.to_dict() for r in reqs]}), 200


@stock_requests_bp.route("/<int:request_id>", methods=["GET"])
def get_request(request_id: int):
    req = stock_request_service.get_request(request_id)
    return jsonify(req.to_dict(include_lines=True)), 200


@stock_requests_bp.route("/<int:request_id>/submit", methods=["POST"])
def submit_request(request_id: int):
    req = stock_request_service.submit_request(request_id, actor=get_actor(json_body()))
    return jsonify(req.to_dict()), 200


@stock_requests_bp.route("/<int:request_id>/approve", methods=["POST"])
def approve_request(request_id: int):
    """Approve a submitted request (also approves a draft/submitted channel)."""
    req = stock_request_service.approve_request(request_id, actor=get_actor(json_body()))
    return jsonify(req.to_dict()), 200


@stock_requests_bp.route("/<int:request_id>/reject", methods=["POST"])
def reject_request(request_id: int):
    """Body: {"reason": str (optional)}"""
    data = json_body()
    req = stock_request_service.reject_request(request_id, data.get("reason"), actor=get_actor(data))
    return jsonify(req.to_dict()), 200


@stock_requests_bp.route("/<int:request_id>/cancel", methods=["POST"])
def cancel_request(request_id: int):
    data = json_body()
    req = stock_request_service.cancel_request(request_id, reason=data.get("reason"), actor=get_actor(data))
    return jsonify(req.to_dict()), 200


@stock_requests_bp.route("/<int:request_id>/allocation", methods=["POST"])
def upload_allocation(request_id: int):
    """
    Upload the SKU-level allocation (approved -> allocated).

    Request body:
    {
        "rows": [
            {"barcode": str, "size": str, "packed_quantity": int, "unit_price_cents": int},
            ...
        ]
    }

    Returns:
        200: {"request": ..., "total_packed": int, "warnings": [...]}
        400: Invalid row (whole batch rejected)
        409: Request is not approved
    """
    data = json_body()
    try:
        result = stock_request_service.upload_allocation(request_id, data["rows"], actor=get_actor(data))
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400

    return jsonify(result.to_dict()), 200


@stock_requests_bp.route("/allocations/<int:allocation_id>", methods=["PATCH"])
def adjust_allocation(allocation_id: int):
    """Body: {"packed_quantity": int}"""
    data = json_body()
    try:
        result = stock_request_service.adjust_allocation(
            allocation_id, data["packed_quantity"], actor=get_actor(data)
        )
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400

    return jsonify(result.to_dict()), 200


@stock_requests_bp.route("/<int:request_id>/pack", methods=["POST"])
def confirm_packing(request_id: int):
    req = stock_request_service.confirm_packing(request_id, actor=get_actor(json_body()))
    return jsonify(req.to_dict()), 200


@stock_requests_bp.route("/<int:request_id>/shipment", methods=["POST"])
def create_shipment(request_id: int):
    """
    Ship a packed request.

    Request body:
    {
        "provider": str,
        "tracking_number": str
    }
    """
    data = json_body()
    try:
        shipment = stock_request_service.create_shipment(
            request_id,
            data["provider"],
            data["tracking_number"],
            actor=get_actor(data),
        )
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400

    return jsonify(shipment.to_dict()), 201


@stock_requests_bp.route("/<int:request_id>/receive", methods=["POST"])
def confirm_receiving(request_id: int):
    """
    Confirm what physically arrived (shipped -> received) and credit the ledger.

    Request body:
    {
        "items": [
            {"barcode": str, "allocated_qty": int (optional), "received_qty": int, "remarks": str (optional)},
            ...
        ],
        "notes": str (optional)
    }
    """
    data = json_body()
    try:
        receiving = stock_request_service.confirm_receiving(
            request_id,
            data["items"],
            notes=data.get("notes"),
            actor=get_actor(data),
        )
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400

    return jsonify(receiving.to_dict()), 201
