"""Prometheus counters for the billing engine."""
import os

from prometheus_client import Counter, REGISTRY

# Multiprocess mode collects from PROMETHEUS_MULTIPROC_DIR instead of a registry
_registry = None if os.environ.get('PROMETHEUS_MULTIPROC_DIR') else REGISTRY

billing_charges_total = Counter(
    'stockflow_billing_charges_total',
    'Charge attempts recorded in the billing ledger',
    ['kind', 'status'],
    registry=_registry
)

webhooks_total = Counter(
    'stockflow_webhooks_total',
    'Gateway webhook deliveries by outcome',
    ['outcome'],
    registry=_registry
)

subscription_transitions_total = Counter(
    'stockflow_subscription_transitions_total',
    'Subscription state machine transitions',
    ['transition'],
    registry=_registry
)
