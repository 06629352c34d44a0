"""Shared builders for escrow tests."""
from decimal import Decimal
from itertools import count

from django.contrib.auth import get_user_model

from escrow.services import SettlementEngine

User = get_user_model()

_sequence = count(1)


def make_user(user_type, **extra):
    n = next(_sequence)
    return User.objects.create_user(
        email=extra.pop('email', f'{user_type}{n}@example.com'),
        password='testpass123',
        first_name=user_type.title(),
        last_name=str(n),
        user_type=user_type,
        **extra,
    )


def make_buyer(**extra):
    return make_user(User.BUYER, **extra)


def make_farmer(**extra):
    return make_user(User.FARMER, **extra)


def paid_entry(buyer, farmer, order_id='ORD-1', total=Decimal('100.00'), engine=None):
    """Escrow with its payment confirmed (status ``pending``)."""
    engine = engine or SettlementEngine()
    return engine.on_payment_confirmed(order_id, buyer.id, farmer.id, total, payment_reference=f'PAY-{order_id}')


def held_entry(buyer, farmer, order_id='ORD-1', total=Decimal('100.00'), engine=None):
    """Escrow whose upfront payment has settled (status ``upfront_held``)."""
    engine = engine or SettlementEngine()
    paid_entry(buyer, farmer, order_id=order_id, total=total, engine=engine)
    return engine.on_upfront_settled(order_id, upfront_payment_reference=f'UP-{order_id}')
