"""
Escrow status graph.

    pending --upfront_settled--> upfront_held
    upfront_held --delivery_confirmed--> remaining_released   (payout)
    upfront_held --dispute_raised--> disputed
    upfront_held --delivery_window_expired--> disputed
    remaining_released --transfer_confirmed--> completed
    disputed --resolved_for_buyer--> refunded                 (refund)
    disputed --resolved_for_farmer--> remaining_released      (payout)

``completed`` and ``refunded`` are terminal.
"""
from .exceptions import InvalidTransitionError

PENDING = 'pending'
UPFRONT_HELD = 'upfront_held'
REMAINING_RELEASED = 'remaining_released'
DISPUTED = 'disputed'
REFUNDED = 'refunded'
COMPLETED = 'completed'

STATUS_CHOICES = (
    (PENDING, 'Payment Pending'),
    (UPFRONT_HELD, 'Upfront Held'),
    (REMAINING_RELEASED, 'Remaining Released'),
    (DISPUTED, 'Disputed'),
    (REFUNDED, 'Refunded'),
    (COMPLETED, 'Completed'),
)

TERMINAL_STATUSES = frozenset({REFUNDED, COMPLETED})

PAYMENT_CONFIRMED = 'payment_confirmed'
UPFRONT_SETTLED = 'upfront_settled'
DELIVERY_CONFIRMED = 'delivery_confirmed'
DISPUTE_RAISED = 'dispute_raised'
DELIVERY_WINDOW_EXPIRED = 'delivery_window_expired'
TRANSFER_CONFIRMED = 'transfer_confirmed'
TRANSFER_FAILED = 'transfer_failed'
REFUND_CONFIRMED = 'refund_confirmed'
PAYOUT_ESCALATED = 'payout_escalated'
RESOLVED_FOR_BUYER = 'resolved_for_buyer'
RESOLVED_FOR_FARMER = 'resolved_for_farmer'

# Disbursement each transition must emit, if any.
PAYOUT = 'payout'
REFUND = 'refund'

TRANSITIONS = {
    (PENDING, UPFRONT_SETTLED): (UPFRONT_HELD, None),
    (UPFRONT_HELD, DELIVERY_CONFIRMED): (REMAINING_RELEASED, PAYOUT),
    (UPFRONT_HELD, DISPUTE_RAISED): (DISPUTED, None),
    (UPFRONT_HELD, DELIVERY_WINDOW_EXPIRED): (DISPUTED, None),
    (REMAINING_RELEASED, TRANSFER_CONFIRMED): (COMPLETED, None),
    (DISPUTED, RESOLVED_FOR_BUYER): (REFUNDED, REFUND),
    (DISPUTED, RESOLVED_FOR_FARMER): (REMAINING_RELEASED, PAYOUT),
}

# Statuses in which a redelivered event has already taken effect.
REPLAY_STATUSES = {
    UPFRONT_SETTLED: frozenset({UPFRONT_HELD}),
    DELIVERY_CONFIRMED: frozenset({REMAINING_RELEASED}),
    DISPUTE_RAISED: frozenset({DISPUTED}),
    DELIVERY_WINDOW_EXPIRED: frozenset({DISPUTED}),
    TRANSFER_CONFIRMED: frozenset({COMPLETED}),
}


def resolve(current_status, event):
    """
    Return ``(target_status, disbursement)`` for ``event`` applied in
    ``current_status``, or raise InvalidTransitionError.
    """
    try:
        return TRANSITIONS[(current_status, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Event '{event}' is not allowed while escrow is '{current_status}'",
            event=event,
            current_status=current_status,
        ) from None


def is_replay(current_status, event):
    return current_status in REPLAY_STATUSES.get(event, ())


def is_terminal(status):
    return status in TERMINAL_STATUSES
