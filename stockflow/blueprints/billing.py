"""Billing blueprint: tenant-facing subscription status, checkout and payment methods."""
from flask import Blueprint, request, g, jsonify, current_app

from stockflow.database import get_session
from stockflow.exceptions import BusinessLogicError
from stockflow.middleware import require_login, require_tenant, require_role
from stockflow.services.billing_service import BillingService

billing_bp = Blueprint('billing', __name__, url_prefix='/billing')


def _json_field(data: dict, name: str) -> str:
    value = data.get(name)
    if not value:
        raise BusinessLogicError(f"El campo '{name}' es requerido")
    return value


@billing_bp.route('/status')
@require_login
@require_tenant
def status():
    """Estado de la suscripción, límites y uso del negocio actual."""
    service = BillingService(get_session())
    return jsonify(service.get_subscription_status(g.tenant_id))


@billing_bp.route('/plans')
def plans():
    """Catálogo público de planes con precios por periodo."""
    return jsonify({'plans': BillingService.get_plans()})


@billing_bp.route('/checkout-config', methods=['POST'])
@require_login
@require_tenant
@require_role('ADMIN')
def checkout_config():
    """Parámetros firmados para el widget de pago."""
    data = request.get_json(silent=True) or {}
    service = BillingService(get_session())
    config = service.get_checkout_config(
        g.tenant_id, _json_field(data, 'plan'), _json_field(data, 'period')
    )
    return jsonify(config)


@billing_bp.route('/verify-payment', methods=['POST'])
@require_login
@require_tenant
@require_role('ADMIN')
def verify_payment():
    """Verificar una transacción del checkout y activar el plan si fue aprobada."""
    data = request.get_json(silent=True) or {}
    service = BillingService(get_session())
    result = service.verify_payment(
        g.tenant_id,
        _json_field(data, 'transaction_id'),
        _json_field(data, 'plan'),
        _json_field(data, 'period'),
    )
    current_app.logger.info(f"[BILLING] Payment verified for tenant {g.tenant_id}: plan={result['plan']}")
    return jsonify(result)


@billing_bp.route('/payment-source', methods=['POST'])
@require_login
@require_tenant
@require_role('ADMIN')
def create_payment_source():
    """Registrar una tarjeta para cobros recurrentes."""
    data = request.get_json(silent=True) or {}
    service = BillingService(get_session())
    result = service.create_payment_source(
        g.tenant_id,
        _json_field(data, 'card_token'),
        _json_field(data, 'acceptance_token'),
        data.get('personal_auth_token'),
    )
    return jsonify(result), 201


@billing_bp.route('/payment-source', methods=['DELETE'])
@require_login
@require_tenant
@require_role('ADMIN')
def remove_payment_source():
    service = BillingService(get_session())
    service.remove_payment_source(g.tenant_id)
    return jsonify({'status': 'ok'})


@billing_bp.route('/history')
@require_login
@require_tenant
def history():
    """Historial de cobros, más reciente primero."""
    limit = min(request.args.get('limit', 50, type=int) or 50, 200)
    service = BillingService(get_session())
    return jsonify({'transactions': service.get_billing_history(g.tenant_id, limit=limit)})
