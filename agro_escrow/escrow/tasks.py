from celery import shared_task

from .services import SettlementEngine


@shared_task(name='escrow.tasks.sweep_expired_deliveries')
def sweep_expired_deliveries():
    flagged = SettlementEngine().on_expiry_sweep()
    return [entry.order_id for entry in flagged]
