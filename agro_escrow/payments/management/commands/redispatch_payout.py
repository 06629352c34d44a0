from django.core.management.base import BaseCommand, CommandError

from escrow.exceptions import SettlementError
from payments.services import PayoutDispatcher


class Command(BaseCommand):
    help = "Resets a failed or escalated payout instruction and dispatches it again."

    def add_arguments(self, parser):
        parser.add_argument('instruction_id', type=int, help='PayoutInstruction id')

    def handle(self, *args, **options):
        instruction_id = options['instruction_id']
        try:
            instruction = PayoutDispatcher().redispatch(instruction_id)
        except SettlementError as e:
            raise CommandError(str(e))

        self.stdout.write(self.style.SUCCESS(
            f"Instruction {instruction.idempotency_key} dispatched: {instruction.status} "
            f"(attempt {instruction.attempts})"
        ))
