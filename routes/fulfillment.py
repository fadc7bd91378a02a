import logging
import secrets

from flask import Blueprint, request, jsonify

from constants import FULFILLMENT_METHOD_DOWNLOAD, DIGITAL_FULFILLMENT_ID_PREFIX
from extensions import limiter
from services.fulfillment import build_default_router, fulfill_order_by_id

logger = logging.getLogger(__name__)

fulfillment_bp = Blueprint("fulfillment", __name__, url_prefix="/internal/fulfillment")


def check_auth():
    """Verify X-FULFILLMENT-TOKEN matches FULFILLMENT_OPS_TOKEN constant-time."""
    token = (request.headers.get("X-FULFILLMENT-TOKEN") or "").strip()

    # Import at call time to pick up test-time value
    from config import FULFILLMENT_OPS_TOKEN
    expected = (FULFILLMENT_OPS_TOKEN or "").strip()

    if not expected or not token:
        return False
    return secrets.compare_digest(token, expected)


@fulfillment_bp.before_request
def require_ops_token():
    if not check_auth():
        return jsonify({"success": False, "error": "unauthorized"}), 401


@fulfillment_bp.route("/orders/<order_id>/fulfill", methods=["POST"])
@limiter.limit("10 per minute")
def fulfill(order_id):
    """
    Operator-triggered (re-)fulfillment.
    Not idempotent: a second call re-submits prints and re-issues download links.
    """
    logger.info(f"[Fulfillment] Operator triggered fulfillment for order {order_id}")
    outcome = fulfill_order_by_id(order_id, router=build_default_router())
    if outcome is None:
        return jsonify({"success": False, "error": "order not found"}), 404

    _order, results, status = outcome
    return jsonify({
        "success": all(r.success for r in results),
        "fulfillment_status": status,
        "results": [r.to_dict() for r in results],
    })


@fulfillment_bp.route("/orders/<order_id>/status", methods=["GET"])
@limiter.limit("60 per minute")
def status(order_id):
    router = build_default_router()
    if not router.store.get_order(order_id):
        return jsonify({"success": False, "error": "order not found"}), 404

    statuses = router.get_order_fulfillment_status(order_id)
    return jsonify({
        "success": True,
        "order_id": order_id,
        "fulfillments": {method: s.to_dict() for method, s in statuses.items()},
    })


@fulfillment_bp.route("/orders/<order_id>/digital/cancel", methods=["POST"])
@limiter.limit("10 per minute")
def cancel_digital(order_id):
    router = build_default_router()
    if not router.store.get_order(order_id):
        return jsonify({"success": False, "error": "order not found"}), 404

    provider = router.provider_for_method(FULFILLMENT_METHOD_DOWNLOAD)
    if provider is None:
        return jsonify({"success": False, "error": "digital delivery not configured"}), 500

    cancelled = provider.cancel(f"{DIGITAL_FULFILLMENT_ID_PREFIX}{order_id}")
    if not cancelled:
        return jsonify({"success": False, "error": "failed to expire downloads"}), 500
    return jsonify({"success": True, "order_id": order_id})
