import logging

from django.dispatch import Signal, receiver

from . import state_machine

audit_logger = logging.getLogger('audit')

# Sent after commit with entry, event, from_status, to_status.
escrow_status_changed = Signal()


@receiver(escrow_status_changed)
def log_party_notice(sender, entry, event, from_status, to_status, **kwargs):
    """
    Write the notices buyers, farmers and moderators need to see. Email and
    push delivery hook into the same signal.
    """
    if to_status == state_machine.DISPUTED:
        audit_logger.warning(
            f"Escrow for order {entry.order_id} disputed: {entry.dispute_reason}. "
            f"Notify buyer {entry.buyer_id}, farmer {entry.farmer_id} and moderators."
        )
    elif event in (state_machine.RESOLVED_FOR_BUYER, state_machine.RESOLVED_FOR_FARMER):
        audit_logger.info(
            f"Dispute on order {entry.order_id} resolved in favour of {entry.dispute_resolution}. "
            f"Notify buyer {entry.buyer_id} and farmer {entry.farmer_id}."
        )
    elif event == state_machine.REFUND_CONFIRMED:
        audit_logger.info(f"Refund of {entry.held_amount} for order {entry.order_id} reached buyer {entry.buyer_id}")
