"""
Payout dispatcher tests: emission idempotency, claim-before-send, retries
with backoff, escalation to operators and provider adapters.
"""
import hashlib
import hmac
import json
from datetime import timedelta
from decimal import Decimal
from unittest import mock

import requests
from django.test import TestCase, override_settings
from django.utils import timezone

from escrow import state_machine
from escrow.exceptions import ConflictError, DispatchFailure
from escrow.models import EscrowEntry, EscrowEvent
from escrow.services import SettlementEngine
from payments.models import PayoutInstruction, PayoutMethod, PaystackPayoutMethod, StripePayoutMethod
from payments.providers import get_payment_provider
from payments.providers.manual import ManualTransferProvider
from payments.providers.paystack import PaystackProvider
from payments.services import PayoutDispatcher
from factories import held_entry, make_buyer, make_farmer


def failing_provider(message='bank offline'):
    provider = mock.Mock(spec=ManualTransferProvider)
    provider.transfer_to_account.return_value = {'status': 'error', 'message': message}
    provider.refund.return_value = {'status': 'error', 'message': message}
    return provider


class DispatcherTestBase(TestCase):

    def setUp(self):
        self.buyer = make_buyer()
        self.farmer = make_farmer()
        self.dispatcher = PayoutDispatcher()
        self.engine = SettlementEngine(dispatcher=self.dispatcher)

    def release(self, order_id='ORD-1'):
        held_entry(self.buyer, self.farmer, order_id=order_id, engine=self.engine)
        entry = self.engine.on_delivery_confirmed(order_id)
        return entry, PayoutInstruction.objects.get(entry=entry)


class EmissionTestCase(DispatcherTestBase):

    def test_emit_is_idempotent_per_entry_and_target(self):
        entry, instruction = self.release()

        again = self.dispatcher.emit_payout_instruction(entry.pk, self.farmer.id, entry.remaining_amount)

        self.assertEqual(again.pk, instruction.pk)
        self.assertEqual(PayoutInstruction.objects.count(), 1)
        self.assertEqual(instruction.provider, 'manual')
        self.assertEqual(instruction.status, PayoutInstruction.PENDING)

    def test_refund_after_payout_is_refused(self):
        entry, _ = self.release()

        with self.assertRaises(ConflictError):
            self.dispatcher.emit_refund_instruction(entry.pk, self.buyer.id, entry.held_amount)

        self.assertEqual(
            list(PayoutInstruction.objects.values_list('instruction_type', flat=True)),
            [PayoutInstruction.PAYOUT],
        )

    def test_dispatch_is_queued_on_commit(self):
        with mock.patch('payments.tasks.dispatch_instruction.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                _, instruction = self.release()

        delay.assert_called_once_with(instruction.pk)

    @override_settings(PAYOUT_AUTO_DISPATCH=False)
    def test_auto_dispatch_can_be_disabled(self):
        with mock.patch('payments.tasks.dispatch_instruction.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                self.release()

        delay.assert_not_called()

    def test_eager_dispatch_runs_manual_provider(self):
        with self.captureOnCommitCallbacks(execute=True):
            _, instruction = self.release()

        instruction.refresh_from_db()
        self.assertEqual(instruction.status, PayoutInstruction.SENT)
        self.assertEqual(instruction.attempts, 1)
        self.assertEqual(instruction.provider_reference, instruction.idempotency_key)


class DispatchTestCase(DispatcherTestBase):

    def test_instruction_is_only_sent_once(self):
        _, instruction = self.release()

        with mock.patch.object(ManualTransferProvider, 'transfer_to_account', autospec=True,
                               return_value={'status': 'pending', 'reference': 'REF'}) as transfer:
            self.dispatcher.dispatch(instruction.pk)
            self.dispatcher.dispatch(instruction.pk)

        self.assertEqual(transfer.call_count, 1)
        instruction.refresh_from_db()
        self.assertEqual(instruction.attempts, 1)
        self.assertEqual(instruction.status, PayoutInstruction.SENT)

    def test_idempotency_key_is_passed_to_provider(self):
        _, instruction = self.release()

        with mock.patch.object(ManualTransferProvider, 'transfer_to_account', autospec=True,
                               return_value={'status': 'pending', 'reference': 'REF'}) as transfer:
            self.dispatcher.dispatch(instruction.pk)

        kwargs = transfer.call_args.kwargs
        self.assertEqual(kwargs['idempotency_key'], instruction.idempotency_key)
        self.assertEqual(kwargs['amount'], Decimal('70.00'))

    def test_immediate_success_completes_entry(self):
        entry, instruction = self.release()

        with mock.patch.object(ManualTransferProvider, 'transfer_to_account', autospec=True,
                               return_value={'status': 'success', 'reference': 'TRF-9'}):
            instruction = self.dispatcher.dispatch(instruction.pk)

        self.assertEqual(instruction.status, PayoutInstruction.CONFIRMED)
        self.assertEqual(instruction.provider_reference, 'TRF-9')
        entry.refresh_from_db()
        self.assertEqual(entry.status, EscrowEntry.COMPLETED)

    def test_replayed_confirmation_is_ignored(self):
        entry, instruction = self.release()
        instruction = self.dispatcher.dispatch(instruction.pk)

        self.dispatcher.handle_transfer_outcome(instruction, success=True, reference='TRF-1')
        self.dispatcher.handle_transfer_outcome(instruction, success=True, reference='TRF-1')

        entry.refresh_from_db()
        self.assertEqual(entry.status, EscrowEntry.COMPLETED)
        self.assertEqual(entry.events.filter(event=state_machine.TRANSFER_CONFIRMED).count(), 1)
        self.assertEqual(PayoutInstruction.objects.count(), 1)

    def test_failure_schedules_retry_with_backoff(self):
        entry, instruction = self.release()

        with mock.patch.object(self.dispatcher, '_get_provider', return_value=(failing_provider(), 'manual')), \
                mock.patch('payments.tasks.dispatch_instruction.apply_async') as apply_async:
            with self.captureOnCommitCallbacks(execute=True):
                instruction = self.dispatcher.dispatch(instruction.pk)

        self.assertEqual(instruction.status, PayoutInstruction.FAILED)
        self.assertEqual(instruction.last_error, 'bank offline')
        apply_async.assert_called_once_with((instruction.pk,), countdown=2)

        entry.refresh_from_db()
        self.assertEqual(entry.status, EscrowEntry.REMAINING_RELEASED)
        self.assertTrue(entry.events.filter(kind=EscrowEvent.ALERT, event=state_machine.TRANSFER_FAILED).exists())

    @override_settings(PAYOUT_MAX_ATTEMPTS=3)
    def test_repeated_failure_escalates(self):
        entry, instruction = self.release()

        with mock.patch.object(self.dispatcher, '_get_provider', return_value=(failing_provider(), 'manual')), \
                mock.patch('payments.tasks.dispatch_instruction.apply_async') as apply_async, \
                self.assertLogs('audit', level='ERROR') as audit:
            for _ in range(3):
                with self.captureOnCommitCallbacks(execute=True):
                    instruction = self.dispatcher.dispatch(instruction.pk)

        self.assertEqual(instruction.status, PayoutInstruction.ESCALATED)
        self.assertEqual(instruction.attempts, 3)
        self.assertEqual([c.kwargs['countdown'] for c in apply_async.call_args_list], [2, 4])
        self.assertIn('escalated', audit.output[0])

        entry.refresh_from_db()
        self.assertEqual(entry.status, EscrowEntry.REMAINING_RELEASED)
        self.assertTrue(entry.events.filter(event=state_machine.PAYOUT_ESCALATED).exists())

        # Escalated instructions are never sent again automatically.
        with mock.patch.object(ManualTransferProvider, 'transfer_to_account', autospec=True) as transfer:
            self.dispatcher.dispatch(instruction.pk)
        transfer.assert_not_called()

    def test_redispatch_resets_escalated_instruction(self):
        _, instruction = self.release()
        PayoutInstruction.objects.filter(pk=instruction.pk).update(
            status=PayoutInstruction.ESCALATED, attempts=3, last_error='bank offline',
        )

        instruction = self.dispatcher.redispatch(instruction.pk)

        self.assertEqual(instruction.status, PayoutInstruction.SENT)
        self.assertEqual(instruction.attempts, 1)
        self.assertEqual(instruction.last_error, '')

    def test_redispatch_refuses_in_flight_instruction(self):
        _, instruction = self.release()
        self.dispatcher.dispatch(instruction.pk)

        with self.assertRaises(DispatchFailure):
            self.dispatcher.redispatch(instruction.pk)

    def test_missing_payout_method_fails_dispatch(self):
        _, instruction = self.release()
        PayoutInstruction.objects.filter(pk=instruction.pk).update(provider='paystack')

        with mock.patch('payments.tasks.dispatch_instruction.apply_async'), \
                mock.patch('payments.providers.paystack.requests.post') as post:
            instruction = self.dispatcher.dispatch(instruction.pk)

        post.assert_not_called()
        self.assertEqual(instruction.status, PayoutInstruction.FAILED)
        self.assertIn('No paystack payout method', instruction.last_error)

    def test_provider_exception_fails_instruction(self):
        entry, instruction = self.release()
        provider = mock.Mock(spec=ManualTransferProvider)
        provider.transfer_to_account.side_effect = RuntimeError('connection reset')

        with mock.patch.object(self.dispatcher, '_get_provider', return_value=(provider, 'manual')), \
                mock.patch('payments.tasks.dispatch_instruction.apply_async') as apply_async:
            with self.captureOnCommitCallbacks(execute=True):
                instruction = self.dispatcher.dispatch(instruction.pk)

        self.assertEqual(instruction.status, PayoutInstruction.FAILED)
        self.assertEqual(instruction.attempts, 1)
        self.assertIn('connection reset', instruction.last_error)
        apply_async.assert_called_once_with((instruction.pk,), countdown=2)
        self.assertTrue(entry.events.filter(kind=EscrowEvent.ALERT, event=state_machine.TRANSFER_FAILED).exists())

    def test_redispatch_recovers_stale_processing_instruction(self):
        _, instruction = self.release()
        PayoutInstruction.objects.filter(pk=instruction.pk).update(
            status=PayoutInstruction.PROCESSING, attempts=1,
            updated_at=timezone.now() - timedelta(minutes=30),
        )

        instruction = self.dispatcher.redispatch(instruction.pk)

        self.assertEqual(instruction.status, PayoutInstruction.SENT)
        self.assertEqual(instruction.attempts, 1)

    def test_redispatch_leaves_recent_processing_instruction(self):
        _, instruction = self.release()
        PayoutInstruction.objects.filter(pk=instruction.pk).update(
            status=PayoutInstruction.PROCESSING, attempts=1, updated_at=timezone.now(),
        )

        with self.assertRaises(DispatchFailure):
            self.dispatcher.redispatch(instruction.pk)

        instruction.refresh_from_db()
        self.assertEqual(instruction.status, PayoutInstruction.PROCESSING)

    def test_refund_is_sent_against_buyer_payment(self):
        held_entry(self.buyer, self.farmer, engine=self.engine)
        self.engine.on_dispute_raised('ORD-1', 'item damaged')
        entry = self.engine.on_dispute_resolved('ORD-1', 'buyer')
        instruction = PayoutInstruction.objects.get(entry=entry)

        with mock.patch.object(ManualTransferProvider, 'refund', autospec=True,
                               return_value={'status': 'success', 'reference': 'RF-1'}) as refund:
            self.dispatcher.dispatch(instruction.pk)

        args = refund.call_args.args
        self.assertEqual(args[1], 'PAY-ORD-1')
        self.assertEqual(args[2], Decimal('30.00'))
        entry.refresh_from_db()
        self.assertEqual(entry.status, EscrowEntry.REFUNDED)
        self.assertIsNotNone(entry.refunded_at)

    def test_find_by_reference(self):
        _, instruction = self.release()
        self.dispatcher.dispatch(instruction.pk)
        PayoutInstruction.objects.filter(pk=instruction.pk).update(provider_reference='TRF-77')

        self.assertEqual(self.dispatcher.find_by_reference('TRF-77').pk, instruction.pk)
        self.assertEqual(self.dispatcher.find_by_reference(instruction.idempotency_key).pk, instruction.pk)


class PayoutDetailsTestCase(DispatcherTestBase):

    def test_paystack_details_use_default_active_method(self):
        older = PayoutMethod.objects.create(user=self.farmer, provider='paystack')
        PaystackPayoutMethod.objects.create(payout_method=older, recipient_code='RCP_old', account_name='Old')
        default = PayoutMethod.objects.create(user=self.farmer, provider='paystack', is_default=True)
        PaystackPayoutMethod.objects.create(payout_method=default, recipient_code='RCP_main', account_name='Main')

        details = self.dispatcher._get_farmer_payout_details(self.farmer, 'paystack')

        self.assertEqual(details['recipient_code'], 'RCP_main')

    def test_stripe_details_require_enabled_payouts(self):
        method = PayoutMethod.objects.create(user=self.farmer, provider='stripe', is_default=True)
        StripePayoutMethod.objects.create(payout_method=method, stripe_account_id='acct_1')

        self.assertIsNone(self.dispatcher._get_farmer_payout_details(self.farmer, 'stripe'))

        StripePayoutMethod.objects.filter(payout_method=method).update(payouts_enabled=True)
        details = self.dispatcher._get_farmer_payout_details(self.farmer, 'stripe')
        self.assertEqual(details['stripe_account_id'], 'acct_1')


@override_settings(PAYSTACK_SECRET_KEY='sk_test_secret', PAYSTACK_BASE_URL='https://api.paystack.test')
class PaystackProviderTestCase(TestCase):

    def test_transfer_posts_minor_units_and_stable_reference(self):
        provider = PaystackProvider()
        response = mock.Mock()
        response.json.return_value = {'status': True, 'message': 'Transfer has been queued', 'data': {'status': 'pending', 'transfer_code': 'TRF_x'}}

        with mock.patch('payments.providers.paystack.requests.post', return_value=response) as post:
            result = provider.transfer_to_account(
                {'recipient_code': 'RCP_1'}, Decimal('70.00'), idempotency_key='abc:remaining_released',
            )

        payload = post.call_args.kwargs['json']
        self.assertEqual(post.call_args.args[0], 'https://api.paystack.test/transfer')
        self.assertEqual(payload['amount'], 7000)
        self.assertEqual(payload['source'], 'balance')
        self.assertEqual(payload['recipient'], 'RCP_1')
        self.assertEqual(payload['reference'], PaystackProvider.transfer_reference('abc:remaining_released'))
        self.assertEqual(result['status'], 'pending')
        self.assertEqual(result['reference'], payload['reference'])

    def test_transfer_network_error_is_returned_not_raised(self):
        provider = PaystackProvider()

        with mock.patch('payments.providers.paystack.requests.post', side_effect=requests.exceptions.ConnectionError('down')):
            result = provider.transfer_to_account({'recipient_code': 'RCP_1'}, Decimal('1.00'), idempotency_key='k')

        self.assertEqual(result['status'], 'error')
        self.assertIn('down', result['message'])

    def test_webhook_signature_is_checked(self):
        provider = PaystackProvider()
        body = json.dumps({'event': 'transfer.success', 'data': {'id': 9, 'reference': 'ref-1'}}).encode()
        signature = hmac.new(b'sk_test_secret', body, hashlib.sha512).hexdigest()

        parsed = provider.parse_webhook(body, {'X-Paystack-Signature': signature})
        self.assertEqual(parsed['reference'], 'ref-1')
        self.assertTrue(parsed['success'])
        self.assertEqual(parsed['event_id'], 'transfer.success:9')

        self.assertIsNone(provider.parse_webhook(body, {'X-Paystack-Signature': 'forged'}))

    def test_factory_knows_configured_providers(self):
        self.assertIsInstance(get_payment_provider('paystack'), PaystackProvider)
        self.assertIsInstance(get_payment_provider('manual'), ManualTransferProvider)
        with self.assertRaises(ValueError):
            get_payment_provider('flutterwave')


class StripeProviderTestCase(TestCase):

    @override_settings(STRIPE_SECRET_KEY='sk_test', PAYOUT_CURRENCY='USD')
    def test_transfer_forwards_idempotency_key(self):
        provider = get_payment_provider('stripe')

        with mock.patch('payments.providers.stripe.stripe.Transfer.create', return_value=mock.Mock(id='tr_1')) as create:
            result = provider.transfer_to_account(
                {'stripe_account_id': 'acct_1'}, Decimal('12.34'), idempotency_key='abc:remaining_released',
            )

        kwargs = create.call_args.kwargs
        self.assertEqual(kwargs['amount'], 1234)
        self.assertEqual(kwargs['currency'], 'usd')
        self.assertEqual(kwargs['destination'], 'acct_1')
        self.assertEqual(kwargs['idempotency_key'], 'abc:remaining_released')
        self.assertEqual(result, {'status': 'success', 'reference': 'tr_1', 'message': 'Transfer created'})

    @override_settings(STRIPE_SECRET_KEY='sk_test')
    def test_pending_refund_is_reported_pending(self):
        provider = get_payment_provider('stripe')

        with mock.patch('payments.providers.stripe.stripe.Refund.create', return_value=mock.Mock(id='re_1', status='pending')):
            result = provider.refund('pi_1', Decimal('30.00'), 'dispute', idempotency_key='abc:refunded')

        self.assertEqual(result['status'], 'pending')
        self.assertEqual(result['reference'], 're_1')
