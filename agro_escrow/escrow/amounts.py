from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.conf import settings

from .exceptions import InvalidEventError

CENT = Decimal('0.01')


def to_money(value):
    """
    Parse ``value`` as a positive amount with at most two decimal places.
    Sub-cent amounts are rejected rather than rounded.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidEventError(f"Invalid amount: {value!r}") from None

    if not amount.is_finite() or amount <= 0:
        raise InvalidEventError(f"Amount must be greater than zero, got {value!r}")
    if amount != amount.quantize(CENT):
        raise InvalidEventError(f"Amount has more than two decimal places: {value!r}")
    return amount.quantize(CENT)


def compute_split(total_amount, rate=None):
    """
    Split ``total_amount`` into (upfront, remaining).

    The upfront share is rounded half-up to the cent; the remaining share is
    the exact difference, so the two always sum to the total.
    """
    if rate is None:
        rate = settings.ESCROW_UPFRONT_RATE
    rate = Decimal(str(rate))
    upfront = (total_amount * rate).quantize(CENT, rounding=ROUND_HALF_UP)
    remaining = total_amount - upfront
    return upfront, remaining
