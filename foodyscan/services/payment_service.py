from __future__ import annotations

import hashlib
import hmac
import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import requests

from ..utils.errors import NotFoundError, PaymentError

logger = logging.getLogger(__name__)

RAZORPAY_ORDERS_URL = "https://api.razorpay.com/v1/orders"


class PaymentService:
    """Razorpay checkout handshake and subscription bookkeeping.

    The flow is: :meth:`create_order` -> the client opens Razorpay's hosted
    checkout -> :meth:`verify_and_activate` checks the signature Razorpay
    returned and records the subscription.
    """

    def __init__(self, storage_service, session: Optional[requests.Session] = None) -> None:
        self._storage = storage_service
        self._http = session or requests.Session()
        self._key_id = os.getenv('RAZORPAY_KEY_ID', '')
        self._key_secret = os.getenv('RAZORPAY_KEY_SECRET', '')
        self._timeout = float(os.getenv('RAZORPAY_TIMEOUT', '15'))

    def create_order(self, user_id: str, plan_type: str) -> Dict[str, Any]:
        if not self._key_id or not self._key_secret:
            raise PaymentError("Payments are not configured on this server.", 503)

        plan = self._require_plan(plan_type)
        order_data = {
            'amount': int(round(float(plan['price']) * 100)),
            'currency': 'INR',
            'receipt': f"ord_{int(time.time() * 1000)}",
            'notes': {'user_id': user_id, 'plan_type': plan_type},
        }
        logger.info('payments.create_order', extra={'user_id': user_id, 'plan_type': plan_type})

        try:
            response = self._http.post(
                RAZORPAY_ORDERS_URL,
                json=order_data,
                auth=(self._key_id, self._key_secret),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.warning('payments.gateway_unreachable', exc_info=True)
            raise PaymentError("Payment gateway error", 502) from exc

        if response.status_code >= 400:
            logger.error('payments.gateway_error', extra={'status': response.status_code, 'body': response.text})
            raise PaymentError(f"Razorpay API error: {response.text}", 502)

        order = response.json()
        return {
            'orderId': order['id'],
            'amount': order['amount'],
            'currency': order['currency'],
            'keyId': self._key_id,
            'planName': plan.get('name'),
            'planType': plan.get('plan_type'),
        }

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret or not order_id or not payment_id or not signature:
            return False
        expected = hmac.new(
            self._key_secret.encode('utf-8'),
            f"{order_id}|{payment_id}".encode('utf-8'),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)

    def verify_and_activate(
        self,
        user_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
        plan_type: str,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        # Nothing is read or written until the signature checks out.
        if not self.verify_signature(order_id, payment_id, signature):
            logger.warning('payments.invalid_signature', extra={'user_id': user_id, 'order_id': order_id})
            raise PaymentError("Invalid payment signature")

        plan = self._require_plan(plan_type)
        start = now or datetime.now(timezone.utc)
        expiry = start + timedelta(days=int(plan['duration_days']))

        self._storage.upsert_subscription(
            user_id,
            {
                'plan_type': plan_type,
                'status': 'active',
                'razorpay_order_id': order_id,
                'razorpay_payment_id': payment_id,
                'razorpay_signature': signature,
                'amount': plan['price'],
                'currency': 'INR',
                'start_date': start.isoformat(),
                'expiry_date': expiry.isoformat(),
            },
        )
        logger.info('payments.subscription_activated', extra={'user_id': user_id, 'plan_type': plan_type})

        return {
            'success': True,
            'message': 'Payment verified and subscription activated',
            'expiryDate': expiry.isoformat(),
        }

    def subscription_status(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        subscription = self._storage.fetch_subscription(user_id)
        if not subscription:
            return {'active': False, 'planType': 'free', 'status': None, 'expiryDate': None}

        expiry = _parse_timestamp(subscription.get('expiry_date'))
        status = subscription.get('status')
        active = status == 'active' and expiry is not None and expiry > now
        if status == 'active' and not active:
            status = 'expired'
        return {
            'active': active,
            'planType': subscription.get('plan_type') if active else 'free',
            'status': status,
            'expiryDate': subscription.get('expiry_date'),
        }

    def _require_plan(self, plan_type: str) -> Dict[str, Any]:
        plan = self._storage.fetch_plan(plan_type) if plan_type else None
        if not plan:
            raise NotFoundError("Plan not found")
        return plan


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
