"""
Order lifecycle webhook handlers.
Credits loyalty points for ORDERS_CREATE deliveries.

Shopify delivers webhooks at least once and may redeliver or reorder them.
Crediting is idempotent per order, so:
- guest orders, zero-point orders and redeliveries are acknowledged with 200
- a failed credit answers 500 so Shopify redelivers; the retry is safe
"""
from flask import Blueprint, request, jsonify, current_app
from . import get_shop_domain_from_headers
from ..services.points_engine import PointsEngine, OrderEvent
from ..utils.errors import bad_request, error_response, ErrorCode
from ..utils.exceptions import ValidationError


order_lifecycle_bp = Blueprint('order_lifecycle', __name__)


@order_lifecycle_bp.route('/orders/create', methods=['POST'])
def handle_order_created():
    """Handle ORDERS_CREATE webhook."""
    shop_domain = get_shop_domain_from_headers()

    payload = request.get_json(silent=True)
    try:
        event = OrderEvent.from_shopify_payload(payload)
    except ValidationError as e:
        current_app.logger.warning(f'[Webhook] Rejected orders/create from {shop_domain}: {e.message}')
        return bad_request(e.message, ErrorCode.VALIDATION_ERROR)

    try:
        outcome = PointsEngine(shop_domain).credit_order(event)
    except Exception as e:
        current_app.logger.error(
            f'[Webhook] Points credit failed for order {event.order_id} on {shop_domain}: {e}'
        )
        return error_response(
            'Points credit failed, please redeliver',
            ErrorCode.INTERNAL_ERROR,
            500,
            log_error=False,
        )

    return jsonify({
        'success': True,
        'order_id': event.order_id,
        'order_number': event.order_number,
        **outcome.to_dict(),
    })
