from abc import ABC, abstractmethod


class BasePaymentProvider(ABC):
    """
    Abstract base class for transfer providers.

    Every call returns a dict whose ``status`` is ``'success'`` (money moved),
    ``'pending'`` (accepted, outcome arrives later by webhook) or ``'error'``.
    Providers never raise across this seam.
    """
    name = None

    def __init__(self, **kwargs):
        """Initialize the payment provider with configuration."""
        self.config = kwargs

    @abstractmethod
    def transfer_to_account(self, recipient, amount, *, idempotency_key, **kwargs):
        """
        Send ``amount`` to a farmer.

        Args:
            recipient: Dict of provider-specific recipient details
            amount: Amount to transfer (as Decimal)
            idempotency_key: Stable key; repeating it must not move money twice

        Returns:
            Dict with ``status`` and, when known, ``reference``
        """
        pass

    @abstractmethod
    def refund(self, provider_transaction_id, amount, reason, *, idempotency_key):
        """
        Return ``amount`` of an earlier payment to the buyer.

        Args:
            provider_transaction_id: Reference of the original buyer payment
            amount: Amount to refund (as Decimal)
            reason: Human readable reason sent to the provider
            idempotency_key: Stable key; repeating it must not refund twice

        Returns:
            Dict with ``status`` and, when known, ``reference``
        """
        pass

    def parse_webhook(self, payload, headers):
        """
        Validate and normalise a transfer webhook.

        Args:
            payload: Raw request body (bytes)
            headers: Request headers mapping

        Returns:
            Dict with ``event_id``, ``reference`` and ``success`` (bool, or
            None for events that do not settle a transfer), or None when the
            signature is invalid.
        """
        return None
