"""
Tests for LedgerStore: idempotent creation and compare-and-swap status updates.
"""
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.test import TestCase
from django.utils import timezone

from escrow.exceptions import ConflictError, NotFound, StaleStateError
from escrow.ledger import LedgerStore
from escrow.models import EscrowEntry
from factories import make_buyer, make_farmer


class LedgerStoreTestCase(TestCase):

    def setUp(self):
        self.ledger = LedgerStore()
        self.buyer = make_buyer()
        self.farmer = make_farmer()

    def _create(self, order_id='ORD-1', total=Decimal('100.00')):
        return self.ledger.create_if_absent(
            order_id=order_id,
            buyer_id=self.buyer.id,
            farmer_id=self.farmer.id,
            total_amount=total,
        )

    def test_create_computes_split(self):
        entry, created = self._create()

        self.assertTrue(created)
        self.assertEqual(entry.status, EscrowEntry.PENDING)
        self.assertEqual(entry.upfront_amount, Decimal('30.00'))
        self.assertEqual(entry.remaining_amount, Decimal('70.00'))
        self.assertIsNone(entry.dispute_reason)

    def test_second_create_returns_existing(self):
        first, _ = self._create()
        second, created = self._create()

        self.assertFalse(created)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(EscrowEntry.objects.filter(order_id='ORD-1').count(), 1)

    def test_lost_insert_race_raises_conflict(self):
        self._create()

        # The lookup misses, as if the winner committed right after it.
        with mock.patch.object(self.ledger, 'get_by_order_id', side_effect=NotFound('gone')):
            with self.assertRaises(ConflictError):
                self._create()

        self.assertEqual(EscrowEntry.objects.filter(order_id='ORD-1').count(), 1)

    def test_get_by_order_id_not_found(self):
        with self.assertRaises(NotFound):
            self.ledger.get_by_order_id('missing')

    def test_update_status_is_conditional(self):
        entry, _ = self._create()
        before = entry.updated_at

        updated = self.ledger.update_status(
            entry.pk, EscrowEntry.PENDING, EscrowEntry.UPFRONT_HELD, upfront_payment_reference='UP-1',
        )

        self.assertEqual(updated.status, EscrowEntry.UPFRONT_HELD)
        self.assertEqual(updated.upfront_payment_reference, 'UP-1')
        self.assertGreaterEqual(updated.updated_at, before)

        with self.assertRaises(StaleStateError) as ctx:
            self.ledger.update_status(entry.pk, EscrowEntry.PENDING, EscrowEntry.UPFRONT_HELD)
        self.assertEqual(ctx.exception.context['current_status'], EscrowEntry.UPFRONT_HELD)

    def test_update_status_refuses_immutable_fields(self):
        entry, _ = self._create()

        with self.assertRaises(ValueError):
            self.ledger.update_status(
                entry.pk, EscrowEntry.PENDING, EscrowEntry.UPFRONT_HELD, total_amount=Decimal('1.00'),
            )

        entry.refresh_from_db()
        self.assertEqual(entry.status, EscrowEntry.PENDING)
        self.assertEqual(entry.total_amount, Decimal('100.00'))

    def test_update_status_unknown_entry(self):
        with self.assertRaises(NotFound):
            self.ledger.update_status(
                uuid.uuid4(), EscrowEntry.PENDING, EscrowEntry.UPFRONT_HELD,
            )

    def test_due_for_expiry_only_returns_held_entries_past_due(self):
        now = timezone.now()
        due, _ = self._create('DUE')
        later, _ = self._create('LATER')
        self._create('PENDING')
        self.ledger.update_status(due.pk, EscrowEntry.PENDING, EscrowEntry.UPFRONT_HELD, delivery_due_at=now - timedelta(minutes=1))
        self.ledger.update_status(later.pk, EscrowEntry.PENDING, EscrowEntry.UPFRONT_HELD, delivery_due_at=now + timedelta(days=1))

        self.assertEqual([e.order_id for e in self.ledger.due_for_expiry(now)], ['DUE'])
