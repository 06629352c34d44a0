import logging

from .base import BasePaymentProvider

logger = logging.getLogger(__name__)


class ManualTransferProvider(BasePaymentProvider):
    """
    Used when no gateway is configured: transfers are carried out by an
    operator, who then confirms them through the admin API.
    """
    name = 'manual'

    def transfer_to_account(self, recipient, amount, *, idempotency_key, **kwargs):
        logger.info(f"Manual payout of {amount} queued for operator. Key: {idempotency_key}")
        return {
            'status': 'pending',
            'reference': idempotency_key,
            'message': 'Awaiting operator confirmation',
        }

    def refund(self, provider_transaction_id, amount, reason, *, idempotency_key):
        logger.info(f"Manual refund of {amount} against {provider_transaction_id} queued for operator. Key: {idempotency_key}")
        return {
            'status': 'pending',
            'reference': idempotency_key,
            'message': 'Awaiting operator confirmation',
        }
