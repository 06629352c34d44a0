import hashlib
import hmac
import json
import logging

import requests
from django.conf import settings

from .base import BasePaymentProvider

logger = logging.getLogger(__name__)


class PaystackProvider(BasePaymentProvider):
    """
    Paystack transfers (farmer payouts) and refunds (buyer refunds).
    Amounts are sent in the currency's minor unit.
    """
    name = 'paystack'

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.secret_key = kwargs.get('secret_key') or settings.PAYSTACK_SECRET_KEY
        self.base_url = kwargs.get('base_url') or settings.PAYSTACK_BASE_URL
        self.currency = kwargs.get('currency') or settings.PAYOUT_CURRENCY
        self.timeout = kwargs.get('timeout', 30)

    def _headers(self):
        return {
            'Authorization': f'Bearer {self.secret_key}',
            'Content-Type': 'application/json',
        }

    @staticmethod
    def transfer_reference(idempotency_key):
        # Paystack references: 16-50 chars of [a-z0-9_-]
        return hashlib.sha256(idempotency_key.encode()).hexdigest()[:40]

    def transfer_to_account(self, recipient, amount, *, idempotency_key, **kwargs):
        """
        Initiate a transfer to a saved Paystack recipient.

        Paystack rejects a second transfer with the same reference, so
        retries of one instruction can never pay twice.
        """
        reference = self.transfer_reference(idempotency_key)
        try:
            payload = {
                'source': 'balance',
                'amount': int(amount * 100),
                'currency': self.currency,
                'recipient': recipient['recipient_code'],
                'reference': reference,
                'reason': kwargs.get('reason') or f'Escrow payout {idempotency_key}',
            }

            logger.info(f"Initiating Paystack transfer: {amount} {self.currency} to {recipient['recipient_code']}")

            response = requests.post(f"{self.base_url}/transfer", json=payload, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()

            transfer_status = (data.get('data') or {}).get('status')
            logger.info(f"Paystack transfer {reference} accepted with status {transfer_status}")

            return {
                'status': 'success' if transfer_status == 'success' else 'pending',
                'reference': reference,
                'transfer_code': (data.get('data') or {}).get('transfer_code'),
                'message': data.get('message', ''),
            }

        except requests.exceptions.RequestException as e:
            logger.error(f"Paystack transfer API request failed: {str(e)}")
            return {
                'status': 'error',
                'reference': reference,
                'message': f'Transfer request failed: {str(e)}',
            }
        except (KeyError, ValueError) as e:
            logger.error(f"Invalid Paystack transfer data: {str(e)}")
            return {
                'status': 'error',
                'reference': reference,
                'message': f'Transfer processing failed: {str(e)}',
            }

    def refund(self, provider_transaction_id, amount, reason, *, idempotency_key):
        try:
            payload = {
                'transaction': provider_transaction_id,
                'amount': int(amount * 100),
                'currency': self.currency,
                'merchant_note': reason,
            }

            logger.info(f"Initiating Paystack refund for {provider_transaction_id}, amount: {amount}")

            response = requests.post(f"{self.base_url}/refund", json=payload, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            data = response.json().get('data') or {}

            return {
                'status': 'success' if data.get('status') == 'processed' else 'pending',
                'reference': str(data.get('id') or ''),
                'message': 'Refund initiated successfully',
            }

        except requests.exceptions.RequestException as e:
            logger.error(f"Paystack refund API request failed: {str(e)}")
            return {
                'status': 'error',
                'message': f'Refund request failed: {str(e)}',
            }
        except ValueError as e:
            logger.error(f"Invalid Paystack refund response: {str(e)}")
            return {
                'status': 'error',
                'message': f'Refund processing failed: {str(e)}',
            }

    def parse_webhook(self, payload, headers):
        signature = headers.get('X-Paystack-Signature') or headers.get('x-paystack-signature') or ''
        expected = hmac.new(self.secret_key.encode(), payload, hashlib.sha512).hexdigest()
        if not self.secret_key or not hmac.compare_digest(expected, signature):
            logger.warning("Rejected Paystack webhook with invalid signature")
            return None

        body = json.loads(payload or b'{}')
        event = body.get('event', '')
        data = body.get('data') or {}

        if event.startswith('transfer.'):
            reference = data.get('reference', '')
            success = {'transfer.success': True, 'transfer.failed': False, 'transfer.reversed': False}.get(event)
        elif event.startswith('refund.'):
            reference = str(data.get('id') or '')
            success = {'refund.processed': True, 'refund.failed': False}.get(event)
        else:
            reference, success = '', None

        return {
            'event_id': f"{event}:{data.get('id') or reference}",
            'reference': reference,
            'success': success,
            'message': data.get('reason') or data.get('gateway_response') or event,
        }
