# backend/channelstock/routes/sales.py
"""
POS sales API routes.
"""
from flask import Blueprint, jsonify, request

from ..request_utils import get_actor, json_body
from ..services import channel_service, sales_service

sales_bp = Blueprint("sales", __name__, url_prefix="/api")


@sales_bp.route("/channels/<int:channel_id>/sales", methods=["POST"])
def create_sale(channel_id: int):
    """
    Record a sale and debit the channel ledger.

    Request body:
    {
        "items": [
            {"barcode": str, "quantity": int, "unit_price_cents": int, "discount_cents": int (optional)},
            ...
        ],
        "adjustments": [{"description": str, "amount_cents": int}] (optional),
        "bill_discount_cents": int (optional)
    }

    Returns:
        201: Sale recorded
        400: Invalid request
        409: Insufficient stock (nothing debited) or channel not active
    """
    data = json_body()

    try:
        sale = sales_service.create_sale(
            channel_id,
            data["items"],
            adjustments=data.get("adjustments"),
            bill_discount_cents=data.get("bill_discount_cents", 0),
            actor=get_actor(data),
        )
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400

    return jsonify(sale.to_dict()), 201


@sales_bp.route("/channels/<int:channel_id>/sales", methods=["GET"])
def list_sales(channel_id: int):
    channel_service.get_channel(channel_id)
    include_cancelled = request.args.get("include_cancelled", "false").lower() in ("1", "true", "yes")
    sales = sales_service.list_sales(channel_id, include_cancelled=include_cancelled)
    return jsonify({"sales": [s.to_dict(include_lines=False) for s in sales]}), 200


@sales_bp.route("/sales/<int:sale_id>", methods=["GET"])
def get_sale(sale_id: int):
    return jsonify(sales_service.get_sale(sale_id).to_dict()), 200


@sales_bp.route("/sales/<int:sale_id>/cancel", methods=["POST"])
def cancel_sale(sale_id: int):
    """
    Cancel a sale and return its quantities to the ledger.

    Idempotent: cancelling a cancelled sale returns 200 with the sale unchanged.
    Body: {"reason": str (optional)}
    """
    data = json_body()
    sale = sales_service.cancel_sale(sale_id, data.get("reason"), actor=get_actor(data))
    return jsonify(sale.to_dict()), 200
