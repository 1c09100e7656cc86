"""
Braintree gateway access.

The gateway is built lazily from BRAINTREE_* settings and handed to the
payment routes through the get_gateway dependency. Gateway result objects
are flattened into plain dicts before they are stored on an order.
"""
import os
import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict

import braintree

from errors import ServiceError

from dotenv import load_dotenv
load_dotenv()

logger = logging.getLogger(__name__)

ENVIRONMENTS = {
    "sandbox": braintree.Environment.Sandbox,
    "production": braintree.Environment.Production,
}


@lru_cache(maxsize=1)
def build_gateway() -> braintree.BraintreeGateway:
    merchant_id = os.getenv("BRAINTREE_MERCHANT_ID")
    public_key = os.getenv("BRAINTREE_PUBLIC_KEY")
    private_key = os.getenv("BRAINTREE_PRIVATE_KEY")
    if not (merchant_id and public_key and private_key):
        raise ServiceError(500, "Payment gateway not configured")
    env_name = os.getenv("BRAINTREE_ENVIRONMENT", "sandbox").lower()
    environment = ENVIRONMENTS.get(env_name, braintree.Environment.Sandbox)
    logger.info("braintree gateway configured for %s", env_name)
    return braintree.BraintreeGateway(
        braintree.Configuration(
            environment=environment,
            merchant_id=merchant_id,
            public_key=public_key,
            private_key=private_key,
        )
    )


def get_gateway():
    return build_gateway()


def _plain(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def transaction_snapshot(transaction: Any) -> Dict[str, Any]:
    return {
        key: _plain(getattr(transaction, key, None))
        for key in (
            "id",
            "status",
            "type",
            "amount",
            "currency_iso_code",
            "payment_instrument_type",
            "processor_response_code",
            "processor_response_text",
            "created_at",
        )
    }


def result_snapshot(result: Any) -> Dict[str, Any]:
    """Copy of a sale result that can live inside a Mongo document"""
    snapshot: Dict[str, Any] = {"success": bool(getattr(result, "is_success", False))}
    transaction = getattr(result, "transaction", None)
    if transaction is not None:
        snapshot["transaction"] = transaction_snapshot(transaction)
    if not snapshot["success"]:
        snapshot["message"] = getattr(result, "message", None) or "Transaction failed"
        errors = getattr(result, "errors", None)
        deep = getattr(errors, "deep_errors", None) or []
        snapshot["errors"] = [
            {"attribute": e.attribute, "code": e.code, "message": e.message}
            for e in deep
        ]
    return snapshot
