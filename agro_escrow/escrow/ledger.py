import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from .amounts import compute_split
from .exceptions import ConflictError, NotFound, StaleStateError
from .models import EscrowEntry

logger = logging.getLogger(__name__)

# Set once at creation; update_status refuses to touch them.
IMMUTABLE_FIELDS = frozenset({
    'id',
    'order_id',
    'buyer',
    'buyer_id',
    'farmer',
    'farmer_id',
    'total_amount',
    'upfront_amount',
    'remaining_amount',
    'created_at',
})


class LedgerStore:
    """
    Durable storage for EscrowEntry rows.

    Writes are conditional: creation is guarded by the unique ``order_id``
    and status changes by a compare-and-swap on the stored status, so the
    database decides races instead of the callers.
    """

    def create_if_absent(self, *, order_id, buyer_id, farmer_id, total_amount, **fields):
        """
        Fetch the entry for ``order_id`` or create it with its upfront /
        remaining split.

        Returns:
            (EscrowEntry, created)

        Raises:
            ConflictError: another writer inserted the same order between our
                lookup and our insert. Re-fetch; do not create again.
        """
        try:
            return self.get_by_order_id(order_id), False
        except NotFound:
            pass

        upfront_amount, remaining_amount = compute_split(total_amount)
        try:
            with transaction.atomic():
                entry = EscrowEntry.objects.create(
                    order_id=order_id,
                    buyer_id=buyer_id,
                    farmer_id=farmer_id,
                    total_amount=total_amount,
                    upfront_amount=upfront_amount,
                    remaining_amount=remaining_amount,
                    **fields,
                )
        except IntegrityError as exc:
            logger.info("Lost escrow creation race", extra={'order_id': order_id})
            raise ConflictError(f"Escrow for order {order_id} was created concurrently", order_id=order_id) from exc

        return entry, True

    def get_by_order_id(self, order_id) -> EscrowEntry:
        try:
            return EscrowEntry.objects.get(order_id=order_id)
        except EscrowEntry.DoesNotExist:
            raise NotFound(f"No escrow entry for order {order_id}", order_id=order_id) from None

    def get(self, entry_id) -> EscrowEntry:
        try:
            return EscrowEntry.objects.get(pk=entry_id)
        except EscrowEntry.DoesNotExist:
            raise NotFound(f"No escrow entry {entry_id}", entry_id=entry_id) from None

    def update_status(self, entry_id, expected_status, new_status, **fields) -> EscrowEntry:
        """
        Move ``entry_id`` from ``expected_status`` to ``new_status`` and write
        ``fields`` in the same statement. ``updated_at`` is always bumped.

        Raises:
            StaleStateError: the stored status is no longer ``expected_status``.
            NotFound: no such entry.
        """
        forbidden = IMMUTABLE_FIELDS.intersection(fields)
        if forbidden:
            raise ValueError(f"Immutable escrow fields cannot be updated: {sorted(forbidden)}")

        updated = EscrowEntry.objects.filter(pk=entry_id, status=expected_status).update(
            status=new_status,
            updated_at=timezone.now(),
            **fields,
        )
        if not updated:
            current = EscrowEntry.objects.filter(pk=entry_id).values_list('status', flat=True).first()
            if current is None:
                raise NotFound(f"No escrow entry {entry_id}", entry_id=entry_id)
            raise StaleStateError(
                f"Escrow {entry_id} is '{current}', expected '{expected_status}'",
                entry_id=entry_id,
                expected_status=expected_status,
                current_status=current,
            )

        return EscrowEntry.objects.get(pk=entry_id)

    def due_for_expiry(self, now):
        """Entries still waiting on delivery whose window closed at or before ``now``."""
        return EscrowEntry.objects.filter(
            status=EscrowEntry.UPFRONT_HELD,
            delivery_due_at__isnull=False,
            delivery_due_at__lte=now,
        ).order_by('delivery_due_at')
