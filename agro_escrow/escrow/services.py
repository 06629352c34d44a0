import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from payments.services import PayoutDispatcher
from . import state_machine
from .amounts import to_money
from .exceptions import ConflictError, InvalidEventError, InvalidTransitionError, SettlementError, StaleStateError
from .ledger import LedgerStore
from .models import EscrowEvent
from .signals import escrow_status_changed

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('audit')

AUTO_FLAG_REASON = "auto-flagged: delivery window expired"

BUYER = 'buyer'
FARMER = 'farmer'
RESOLUTIONS = {
    BUYER: state_machine.RESOLVED_FOR_BUYER,
    FARMER: state_machine.RESOLVED_FOR_FARMER,
}


class SettlementEngine:
    """
    Sole writer of escrow status.

    Every transition reads the entry, checks the event against the status
    graph and writes through ``LedgerStore.update_status`` with the status it
    read. The status change, its journal row and any payout/refund
    instruction commit together. When another writer got there first the
    event is re-evaluated against the fresh entry, where it may turn out to
    be a replay (returned unchanged) or no longer valid (rejected).
    """

    def __init__(self, ledger=None, dispatcher=None):
        self.ledger = ledger or LedgerStore()
        self.dispatcher = dispatcher or PayoutDispatcher()

    # Inbound events

    def on_payment_confirmed(self, order_id, buyer_id, farmer_id, total_amount, payment_reference='', actor=None):
        """
        Create the escrow entry for a paid order, or return the existing one.

        Raises:
            InvalidEventError: bad amount, same party on both sides, or a
                redelivery that disagrees with the stored entry.
        """
        total_amount = to_money(total_amount)
        if str(buyer_id) == str(farmer_id):
            raise InvalidEventError("Buyer and farmer must be different users", order_id=order_id)

        try:
            with transaction.atomic():
                entry, created = self.ledger.create_if_absent(
                    order_id=order_id,
                    buyer_id=buyer_id,
                    farmer_id=farmer_id,
                    total_amount=total_amount,
                    payment_reference=payment_reference or '',
                )
                if created:
                    self._journal(
                        entry,
                        state_machine.PAYMENT_CONFIRMED,
                        '',
                        entry.status,
                        message=f"Payment {payment_reference} confirmed for {total_amount}",
                        actor=actor,
                    )
                    transaction.on_commit(lambda: self._notify(entry, state_machine.PAYMENT_CONFIRMED, ''))
        except ConflictError:
            entry, created = self.ledger.get_by_order_id(order_id), False

        if created:
            logger.info(
                f"Escrow created for order {order_id}: {entry.upfront_amount} upfront, {entry.remaining_amount} remaining",
                extra={'order_id': order_id, 'entry_id': str(entry.pk), 'event': state_machine.PAYMENT_CONFIRMED},
            )
            return entry

        if (
            entry.total_amount != total_amount
            or str(entry.buyer_id) != str(buyer_id)
            or str(entry.farmer_id) != str(farmer_id)
        ):
            audit_logger.warning(f"Conflicting payment confirmation for order {order_id} ignored")
            raise InvalidEventError(
                f"Escrow for order {order_id} already exists with different amount or parties",
                order_id=order_id,
            )

        logger.info(f"Payment confirmation for order {order_id} already recorded", extra={'order_id': order_id})
        return entry

    def on_upfront_settled(self, order_id, upfront_payment_reference='', actor=None):
        now = timezone.now()
        entry, _ = self._apply(
            order_id,
            state_machine.UPFRONT_SETTLED,
            fields={
                'upfront_payment_reference': upfront_payment_reference or '',
                'delivery_due_at': now + timedelta(days=settings.ESCROW_DELIVERY_WINDOW_DAYS),
            },
            message=f"Upfront payment {upfront_payment_reference} settled",
            actor=actor,
        )
        return entry

    def on_delivery_confirmed(self, order_id, actor=None):
        entry, _ = self._apply(
            order_id,
            state_machine.DELIVERY_CONFIRMED,
            fields={'delivered_at': timezone.now()},
            message="Delivery confirmed",
            actor=actor,
        )
        return entry

    def on_dispute_raised(self, order_id, reason, actor=None):
        reason = (reason or '').strip()
        if not reason:
            raise InvalidEventError("A dispute needs a reason", order_id=order_id)

        entry, _ = self._apply(
            order_id,
            state_machine.DISPUTE_RAISED,
            fields={'dispute_reason': reason, 'disputed_at': timezone.now()},
            message=reason,
            actor=actor,
            replay=lambda e: e.status == state_machine.DISPUTED and e.dispute_reason == reason,
        )
        return entry

    def on_dispute_resolved(self, order_id, winning_party, actor=None):
        """Settle a dispute: refund the buyer's held amount or pay the farmer the remainder."""
        if winning_party not in RESOLUTIONS:
            raise InvalidEventError(
                f"Winning party must be one of {sorted(RESOLUTIONS)}, got '{winning_party}'",
                order_id=order_id,
            )

        entry, _ = self._apply(
            order_id,
            RESOLUTIONS[winning_party],
            fields={'dispute_resolution': winning_party, 'dispute_resolved_at': timezone.now()},
            message=f"Dispute resolved in favour of {winning_party}",
            actor=actor,
            replay=lambda e: False,
        )
        return entry

    def on_expiry_sweep(self, now=None):
        """
        Flag every entry whose delivery window closed. Safe to run repeatedly.

        Returns:
            list of entries flagged by this run
        """
        now = now or timezone.now()
        flagged = []
        for entry in self.ledger.due_for_expiry(now):
            try:
                entry, changed = self._apply(
                    entry.order_id,
                    state_machine.DELIVERY_WINDOW_EXPIRED,
                    fields={'dispute_reason': AUTO_FLAG_REASON, 'disputed_at': now},
                    message=AUTO_FLAG_REASON,
                )
            except InvalidTransitionError:
                # delivered or disputed since the query; already journaled
                continue
            except SettlementError as exc:
                audit_logger.warning(
                    f"Delivery sweep skipped order {entry.order_id}: {exc}",
                    extra={'order_id': entry.order_id, 'event': state_machine.DELIVERY_WINDOW_EXPIRED},
                )
                continue
            if changed:
                flagged.append(entry)

        logger.info(f"Delivery sweep at {now.isoformat()} flagged {len(flagged)} escrow(s)")
        return flagged

    def on_transfer_confirmed(self, instruction):
        """The dispatcher reports money has moved for ``instruction``."""
        if instruction.instruction_type == instruction.REFUND:
            return self._confirm_refund(instruction)

        entry, _ = self._apply(
            instruction.entry.order_id,
            state_machine.TRANSFER_CONFIRMED,
            fields={'completed_at': timezone.now()},
            message=f"Payout {instruction.provider_reference or instruction.idempotency_key} confirmed",
        )
        return entry

    def on_transfer_failed(self, instruction, message, escalated=False):
        """
        Journal a failed transfer. The entry keeps its status; only an
        operator can move an escalated instruction on.
        """
        entry = self.ledger.get(instruction.entry_id)
        event = state_machine.PAYOUT_ESCALATED if escalated else state_machine.TRANSFER_FAILED
        EscrowEvent.objects.create(
            entry=entry,
            kind=EscrowEvent.ALERT,
            event=event,
            from_status=entry.status,
            to_status=entry.status,
            message=f"{instruction.instruction_type} attempt {instruction.attempts}: {message}",
        )
        return entry

    # Queries

    def get_escrow_by_order(self, order_id):
        return self.ledger.get_by_order_id(order_id)

    # Internals

    def _apply(self, order_id, event, *, fields=None, message='', actor=None, replay=None):
        """
        Apply ``event`` to the entry for ``order_id``.

        Returns:
            (entry, changed)
        """
        fields = fields or {}
        replay = replay or (lambda e: state_machine.is_replay(e.status, event))
        retries = settings.ESCROW_STALE_RETRIES

        for attempt in range(retries + 1):
            entry = self.ledger.get_by_order_id(order_id)

            if replay(entry):
                logger.info(
                    f"Event {event} already applied to order {order_id}",
                    extra={'order_id': order_id, 'entry_id': str(entry.pk), 'event': event},
                )
                return entry, False

            try:
                target_status, disbursement = state_machine.resolve(entry.status, event)
            except InvalidTransitionError as exc:
                self._reject(entry, event, exc, actor)
                raise

            from_status = entry.status
            try:
                with transaction.atomic():
                    updated = self.ledger.update_status(entry.pk, from_status, target_status, **fields)
                    self._journal(updated, event, from_status, target_status, message=message, actor=actor)

                    if disbursement == state_machine.PAYOUT:
                        self.dispatcher.emit_payout_instruction(updated.pk, updated.farmer_id, updated.remaining_amount)
                    elif disbursement == state_machine.REFUND:
                        self.dispatcher.emit_refund_instruction(updated.pk, updated.buyer_id, updated.held_amount)

                    transaction.on_commit(lambda: self._notify(updated, event, from_status))
            except StaleStateError as exc:
                logger.info(
                    f"Stale write for order {order_id} on {event} (attempt {attempt + 1}), reloading",
                    extra={'order_id': order_id, 'event': event, 'current_status': exc.context.get('current_status')},
                )
                last_error = exc
                continue

            logger.info(
                f"Escrow for order {order_id}: {from_status} -> {target_status} on {event}",
                extra={
                    'order_id': order_id,
                    'entry_id': str(updated.pk),
                    'event': event,
                    'from_status': from_status,
                    'to_status': target_status,
                },
            )
            return updated, True

        raise last_error

    def _confirm_refund(self, instruction):
        entry = self.ledger.get(instruction.entry_id)
        if entry.refunded_at:
            return entry
        if entry.status != state_machine.REFUNDED:
            exc = InvalidTransitionError(
                f"Refund confirmation is not allowed while escrow is '{entry.status}'",
                event=state_machine.REFUND_CONFIRMED,
                current_status=entry.status,
            )
            self._reject(entry, state_machine.REFUND_CONFIRMED, exc, None)
            raise exc

        with transaction.atomic():
            updated = self.ledger.update_status(
                entry.pk,
                state_machine.REFUNDED,
                state_machine.REFUNDED,
                refunded_at=timezone.now(),
            )
            self._journal(
                updated,
                state_machine.REFUND_CONFIRMED,
                state_machine.REFUNDED,
                state_machine.REFUNDED,
                message=f"Refund {instruction.provider_reference or instruction.idempotency_key} confirmed",
            )
            transaction.on_commit(lambda: self._notify(updated, state_machine.REFUND_CONFIRMED, state_machine.REFUNDED))

        logger.info(f"Refund confirmed for order {updated.order_id}", extra={'order_id': updated.order_id})
        return updated

    def _journal(self, entry, event, from_status, to_status, message='', actor=None):
        return EscrowEvent.objects.create(
            entry=entry,
            kind=EscrowEvent.TRANSITION,
            event=event,
            from_status=from_status,
            to_status=to_status,
            message=message,
            actor=actor,
        )

    def _reject(self, entry, event, exc, actor):
        audit_logger.warning(
            f"Rejected {event} for order {entry.order_id} in status {entry.status}",
            extra={'order_id': entry.order_id, 'event': event, 'current_status': entry.status},
        )
        EscrowEvent.objects.create(
            entry=entry,
            kind=EscrowEvent.REJECTED,
            event=event,
            from_status=entry.status,
            to_status=entry.status,
            message=str(exc),
            actor=actor,
        )

    def _notify(self, entry, event, from_status):
        escrow_status_changed.send(
            sender=self.__class__,
            entry=entry,
            event=event,
            from_status=from_status,
            to_status=entry.status,
        )
