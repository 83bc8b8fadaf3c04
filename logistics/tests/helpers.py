"""
Shared fixtures for logistics tests.
"""

from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from core.models import Courier
from logistics.models import Order
from logistics.services import lifecycle


def make_operator(username='dispatcher'):
    return get_user_model().objects.create_user(
        username=username,
        password='testpass123',
        is_staff=True,
    )


def make_courier(phone='+972501000001', full_name='Test Courier', with_user=False, **extra):
    user = None
    if with_user:
        user = get_user_model().objects.create_user(username=f'courier{phone[-4:]}', password='testpass123')
    return Courier.objects.create(full_name=full_name, phone=phone, user=user, **extra)


def make_order(distance_km=Decimal('5'), **overrides) -> Order:
    """New order priced at 5 km by motorcycle during the day: 95 / 23 / 72."""
    fields = {
        'sender_name': 'Dana Sender',
        'sender_phone': '+972521111111',
        'pickup_address': 'Herzl 10, Tel Aviv',
        'receiver_name': 'Noa Receiver',
        'receiver_phone': '+972522222222',
        'delivery_address': 'Dizengoff 50, Tel Aviv',
        'distance_km': distance_km,
        'is_night_window': False,
    }
    fields.update(overrides)
    return lifecycle.create_order(**fields)


def make_published_order(**overrides) -> Order:
    order = make_order(**overrides)
    return lifecycle.publish(order.pk)


def age_publication(order, minutes):
    """Pretend the order was published `minutes` ago."""
    Order.objects.filter(pk=order.pk).update(published_at=timezone.now() - timedelta(minutes=minutes))
