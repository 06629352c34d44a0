from celery import shared_task

from .services import PayoutDispatcher


@shared_task(name='payments.tasks.dispatch_instruction')
def dispatch_instruction(instruction_id):
    instruction = PayoutDispatcher().dispatch(instruction_id)
    return instruction.status
