import logging

import stripe
from django.conf import settings

from .base import BasePaymentProvider

logger = logging.getLogger(__name__)


class StripeProvider(BasePaymentProvider):
    """
    Stripe Connect transfers to farmers and refunds of buyer Payment Intents.
    Stripe deduplicates on ``idempotency_key``.
    """
    name = 'stripe'

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        stripe.api_key = settings.STRIPE_SECRET_KEY
        self.currency = getattr(settings, 'PAYOUT_CURRENCY', 'usd').lower()
        self.webhook_secret = getattr(settings, 'STRIPE_WEBHOOK_SECRET', '')

    def transfer_to_account(self, recipient, amount, *, idempotency_key, **kwargs):
        """
        Transfer funds to a farmer's connected account.

        Args:
            recipient: Dict with ``stripe_account_id``
            amount: Amount to transfer (Decimal)
            idempotency_key: Forwarded to Stripe

        Returns:
            Dict containing transfer response
        """
        try:
            transfer = stripe.Transfer.create(
                amount=int(amount * 100),
                currency=self.currency,
                destination=recipient['stripe_account_id'],
                metadata={
                    'escrow_payout': 'true',
                    'idempotency_key': idempotency_key,
                },
                idempotency_key=idempotency_key,
            )

            logger.info(f"Stripe transfer created: {transfer.id} to {recipient['stripe_account_id']}, amount: {amount}")

            return {
                'status': 'success',
                'reference': transfer.id,
                'message': 'Transfer created',
            }

        except stripe.StripeError as e:
            logger.error(f"Stripe transfer error: {str(e)}")
            return {
                'status': 'error',
                'message': f'Transfer failed: {str(e)}',
            }

    def refund(self, provider_transaction_id, amount, reason, *, idempotency_key):
        """
        Refund part of a buyer's Payment Intent.

        Args:
            provider_transaction_id: Payment Intent ID
            amount: Amount to refund
            reason: Reason for refund

        Returns:
            Dict containing refund response
        """
        try:
            refund = stripe.Refund.create(
                payment_intent=provider_transaction_id,
                amount=int(amount * 100),
                metadata={
                    'reason': reason,
                    'escrow_refund': 'true',
                },
                idempotency_key=idempotency_key,
            )

            logger.info(f"Stripe refund created: {refund.id} for intent {provider_transaction_id}")

            statuses = {'succeeded': 'success', 'pending': 'pending'}
            return {
                'status': statuses.get(refund.status, 'error'),
                'reference': refund.id,
                'message': f'Refund {refund.status}',
            }

        except stripe.StripeError as e:
            logger.error(f"Stripe refund error: {str(e)}")
            return {
                'status': 'error',
                'message': f'Refund failed: {str(e)}',
            }

    def parse_webhook(self, payload, headers):
        signature = headers.get('Stripe-Signature', '')
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Rejected Stripe webhook: {str(e)}")
            return None

        obj = event['data']['object']
        if event['type'] == 'refund.updated':
            success = {'succeeded': True, 'failed': False, 'canceled': False}.get(obj.get('status'))
        elif event['type'] == 'transfer.reversed':
            success = False
        else:
            success = None

        return {
            'event_id': event['id'],
            'reference': obj.get('id', ''),
            'success': success,
            'message': event['type'],
        }
