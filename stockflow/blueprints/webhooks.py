"""
Webhooks Blueprint for Wompi notifications.

The gateway retries anything that is not a 2xx, so once the signature is
verified the endpoint always acknowledges, whatever processing did.
"""

import logging
from flask import Blueprint, request, jsonify
from stockflow.database import get_session
from stockflow.exceptions import SignatureInvalidError
from stockflow.services.billing_service import BillingService

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


@webhooks_bp.route('/wompi', methods=['POST'])
def wompi_webhook():
    """
    Handle Wompi event notifications.

    Expected events:
    - transaction.updated
    """
    raw_body = request.get_data(as_text=True)
    try:
        BillingService(get_session()).handle_webhook(raw_body)
    except SignatureInvalidError as e:
        logger.warning(f"[WEBHOOK] Rejected: {e.message}")
        return jsonify({'status': 'error', 'message': e.message}), 400
    except Exception as e:
        logger.exception(f"[WEBHOOK] Unexpected error: {e}")

    return jsonify({'status': 'received'}), 200
