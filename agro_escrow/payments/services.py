import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from escrow import state_machine
from escrow.exceptions import ConflictError, DispatchFailure, NotFound
from .models import PayoutInstruction, PayoutMethod
from .providers import get_payment_provider

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('audit')


class PayoutDispatcher:
    """
    Turns instructions emitted by the settlement engine into provider calls
    and reports the outcome back to the engine.

    Each instruction is keyed by ``"<entry_id>:<target_state>"``. Sending is
    guarded by a conditional claim on the instruction row, so a transfer is
    requested at most once per attempt no matter how often dispatch runs.
    """

    def __init__(self, provider_name=None):
        self.default_provider_name = provider_name

    def _get_provider(self, provider_name=None):
        name = provider_name or self.default_provider_name or settings.PAYOUT_PROVIDER
        return get_payment_provider(name), name

    @property
    def engine(self):
        from escrow.services import SettlementEngine
        return SettlementEngine(dispatcher=self)

    @staticmethod
    def idempotency_key(entry_id, target_status):
        return f"{entry_id}:{target_status}"

    def emit_payout_instruction(self, entry_id, recipient_id, amount):
        return self._emit(entry_id, PayoutInstruction.PAYOUT, state_machine.REMAINING_RELEASED, recipient_id, amount)

    def emit_refund_instruction(self, entry_id, recipient_id, amount):
        return self._emit(entry_id, PayoutInstruction.REFUND, state_machine.REFUNDED, recipient_id, amount)

    def _emit(self, entry_id, instruction_type, target_status, recipient_id, amount):
        """
        Record the instruction. Must run inside the engine's transaction;
        dispatch is queued for after commit.
        """
        key = self.idempotency_key(entry_id, target_status)
        _, provider_name = self._get_provider()
        try:
            instruction, created = PayoutInstruction.objects.get_or_create(
                idempotency_key=key,
                defaults={
                    'entry_id': entry_id,
                    'instruction_type': instruction_type,
                    'recipient_id': recipient_id,
                    'amount': amount,
                    'provider': provider_name,
                },
            )
        except IntegrityError as exc:
            # The one-to-one on entry already holds the other disbursement.
            audit_logger.error(f"Refused second disbursement for escrow {entry_id}: {instruction_type}")
            raise ConflictError(
                f"Escrow {entry_id} already has a disbursement instruction",
                entry_id=entry_id,
                instruction_type=instruction_type,
            ) from exc

        if not created:
            logger.info(f"Instruction {key} already emitted, skipping")
            return instruction

        logger.info(
            f"Emitted {instruction_type} instruction of {amount} for escrow {entry_id}",
            extra={'entry_id': str(entry_id), 'idempotency_key': key},
        )

        if settings.PAYOUT_AUTO_DISPATCH:
            from .tasks import dispatch_instruction
            transaction.on_commit(lambda: dispatch_instruction.delay(instruction.pk))

        return instruction

    def dispatch(self, instruction_id):
        """
        Claim the instruction and send it to its provider.

        Instructions that are already in flight, confirmed or escalated are
        left alone and returned unchanged.
        """
        claimed = PayoutInstruction.objects.filter(
            pk=instruction_id,
            status__in=PayoutInstruction.DISPATCHABLE_STATUSES,
        ).update(
            status=PayoutInstruction.PROCESSING,
            attempts=F('attempts') + 1,
            updated_at=timezone.now(),
        )

        try:
            instruction = PayoutInstruction.objects.select_related('entry', 'recipient').get(pk=instruction_id)
        except PayoutInstruction.DoesNotExist:
            raise NotFound(f"No payout instruction {instruction_id}", instruction_id=instruction_id) from None

        if not claimed:
            logger.info(f"Instruction {instruction.idempotency_key} is {instruction.status}, not dispatching")
            return instruction

        try:
            result = self._send(instruction)
        except Exception as exc:
            logger.exception(f"Dispatch of {instruction.idempotency_key} raised")
            result = {'status': 'error', 'message': f"{exc.__class__.__name__}: {exc}"}

        result_status = result.get('status')
        if result_status == 'success':
            return self.handle_transfer_outcome(instruction, success=True, reference=result.get('reference', ''))
        if result_status == 'pending':
            PayoutInstruction.objects.filter(pk=instruction.pk, status=PayoutInstruction.PROCESSING).update(
                status=PayoutInstruction.SENT,
                provider_reference=result.get('reference') or '',
                updated_at=timezone.now(),
            )
            instruction.refresh_from_db()
            return instruction

        return self.handle_transfer_outcome(instruction, success=False, message=result.get('message', 'Transfer failed'))

    def _send(self, instruction):
        """Call the provider for a claimed instruction and return its result dict."""
        provider, provider_name = self._get_provider(instruction.provider)
        entry = instruction.entry

        logger.info(f"Dispatching {instruction.instruction_type} {instruction.idempotency_key} via {provider_name}, attempt {instruction.attempts}")

        if instruction.instruction_type == PayoutInstruction.REFUND:
            return provider.refund(
                entry.payment_reference,
                instruction.amount,
                f"Escrow refund for order {entry.order_id}",
                idempotency_key=instruction.idempotency_key,
            )

        recipient = self._get_farmer_payout_details(instruction.recipient, provider_name)
        if not recipient:
            return {
                'status': 'error',
                'message': f'No {provider_name} payout method found for farmer',
            }
        return provider.transfer_to_account(
            recipient=recipient,
            amount=instruction.amount,
            idempotency_key=instruction.idempotency_key,
            reason=f"Escrow payout for order {entry.order_id}",
        )

    def handle_transfer_outcome(self, instruction, *, success, reference='', message=''):
        """
        Record a provider outcome (direct result, webhook or operator) and
        notify the engine.

        The confirmation is stored before the engine is notified, so a
        rejected transition keeps its journal row. A repeated confirmation
        re-notifies the engine, which treats it as a replay.
        """
        now = timezone.now()
        in_flight = (PayoutInstruction.PROCESSING, PayoutInstruction.SENT)

        if success:
            fields = {'status': PayoutInstruction.CONFIRMED, 'confirmed_at': now, 'updated_at': now}
            if reference:
                fields['provider_reference'] = reference
            updated = PayoutInstruction.objects.filter(
                pk=instruction.pk,
                status__in=in_flight + (PayoutInstruction.FAILED, PayoutInstruction.ESCALATED),
            ).update(**fields)
            instruction.refresh_from_db()
            if not updated:
                if instruction.status != PayoutInstruction.CONFIRMED:
                    logger.warning(f"Confirmation for {instruction.idempotency_key} while {instruction.status}, ignoring")
                    return instruction
                logger.info(f"Instruction {instruction.idempotency_key} already confirmed")
            self.engine.on_transfer_confirmed(instruction)
            return instruction

        max_attempts = settings.PAYOUT_MAX_ATTEMPTS
        with transaction.atomic():
            instruction.refresh_from_db()
            escalated = instruction.attempts >= max_attempts
            updated = PayoutInstruction.objects.filter(pk=instruction.pk, status__in=in_flight).update(
                status=PayoutInstruction.ESCALATED if escalated else PayoutInstruction.FAILED,
                last_error=message,
                updated_at=now,
            )
            instruction.refresh_from_db()
            if not updated:
                logger.warning(f"Failure reported for {instruction.idempotency_key} while {instruction.status}, ignoring")
                return instruction

            logger.warning(f"Transfer {instruction.idempotency_key} failed (attempt {instruction.attempts}/{max_attempts}): {message}")
            self.engine.on_transfer_failed(instruction, message, escalated=escalated)

            if escalated:
                audit_logger.error(
                    f"Payout instruction {instruction.idempotency_key} escalated after {instruction.attempts} attempts: {message}"
                )
            else:
                from .tasks import dispatch_instruction
                countdown = settings.PAYOUT_RETRY_BACKOFF_SECONDS * 2 ** (instruction.attempts - 1)
                instruction_id = instruction.pk
                transaction.on_commit(lambda: dispatch_instruction.apply_async((instruction_id,), countdown=countdown))

        return instruction

    def redispatch(self, instruction_id):
        """
        Operator retry of a failed or escalated instruction; attempts start
        over. An instruction stuck in ``processing`` longer than
        PAYOUT_STALE_PROCESSING_MINUTES (its worker died mid-call) is
        treated the same way.
        """
        stale_before = timezone.now() - timedelta(minutes=settings.PAYOUT_STALE_PROCESSING_MINUTES)
        reset = PayoutInstruction.objects.filter(
            Q(status__in=(PayoutInstruction.FAILED, PayoutInstruction.ESCALATED))
            | Q(status=PayoutInstruction.PROCESSING, updated_at__lte=stale_before),
            pk=instruction_id,
        ).update(
            status=PayoutInstruction.PENDING,
            attempts=0,
            last_error='',
            updated_at=timezone.now(),
        )
        if not reset:
            current = PayoutInstruction.objects.filter(pk=instruction_id).values_list('status', flat=True).first()
            if current is None:
                raise NotFound(f"No payout instruction {instruction_id}", instruction_id=instruction_id)
            raise DispatchFailure(
                f"Instruction {instruction_id} is '{current}' and cannot be re-dispatched",
                instruction_id=instruction_id,
            )

        audit_logger.info(f"Payout instruction {instruction_id} re-dispatched by operator")
        return self.dispatch(instruction_id)

    def find_by_reference(self, reference):
        instruction = PayoutInstruction.objects.filter(provider_reference=reference).first()
        if instruction is None:
            instruction = PayoutInstruction.objects.filter(idempotency_key=reference).first()
        if instruction is None:
            raise NotFound(f"No payout instruction for reference {reference}", reference=reference)
        return instruction

    def _get_farmer_payout_details(self, farmer, provider_name: str):
        """
        Get the farmer's preferred payout details for the given provider.
        """
        if provider_name == 'manual':
            return {
                'user_id': str(farmer.id),
                'email': farmer.email,
            }

        payout_method = PayoutMethod.objects.filter(
            user=farmer,
            provider=provider_name,
            is_active=True,
        ).order_by('-is_default', '-created_at').first()

        if not payout_method:
            return None

        # Map provider-specific details
        if provider_name == 'paystack':
            details = getattr(payout_method, 'paystack_details', None)
            if not details:
                return None
            return {
                'recipient_code': details.recipient_code,
                'account_name': details.account_name,
            }
        elif provider_name == 'stripe':
            details = getattr(payout_method, 'stripe_details', None)
            if not details or not details.payouts_enabled:
                return None
            return {
                'stripe_account_id': details.stripe_account_id,
                'user_id': str(farmer.id),
            }
        else:
            return None
