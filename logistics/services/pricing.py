"""
Pricing Calculator for CITYDROP

Pure price computation: no database, no network, no clock (the caller
decides whether the order falls in the night window).

Formula:
    billable_km = max(0, distance_km - free_km)
    pre_vat     = base + billable_km * per_km          (x night multiplier)
    total       = ceil(pre_vat + pre_vat * vat_rate)   (always rounds up)
    commission  = floor(total * commission_rate)
    payout      = total - commission                   (never computed alone)
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, Optional

from django.conf import settings
from django.utils import timezone

CENTS = Decimal('0.01')
UNIT = Decimal('1')


def _dec(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class Tariff:
    base: Decimal
    per_km: Decimal


@dataclass(frozen=True)
class PriceBreakdown:
    """Frozen result of a price computation."""

    vehicle_class: str
    distance_km: Decimal
    base: Decimal
    per_km_rate: Decimal
    billable_km: Decimal
    price_before_vat: Decimal
    vat: Decimal
    total: Decimal
    commission: Decimal
    payout: Decimal
    is_night_window: bool = False
    overridden: bool = False

    def as_order_fields(self) -> dict:
        """Field values for logistics.Order."""
        return {
            'vehicle_class': self.vehicle_class,
            'is_night_window': self.is_night_window,
            'distance_km': self.distance_km,
            'base_price': self.base,
            'per_km_rate': self.per_km_rate,
            'billable_km': self.billable_km,
            'price_before_vat': self.price_before_vat,
            'vat': self.vat,
            'total_price': self.total,
            'commission': self.commission,
            'courier_payout': self.payout,
            'price_overridden': self.overridden,
        }


class PricingCalculator:
    """
    Price calculation engine.

    Split: commission rounded down, courier payout is the remainder, so
    commission + payout == total holds exactly.
    """

    def __init__(
        self,
        tariffs: Dict[str, Tariff],
        free_km,
        vat_rate,
        commission_rate,
        night_multiplier=Decimal('1'),
    ):
        self.tariffs = tariffs
        self.free_km = _dec(free_km)
        self.vat_rate = _dec(vat_rate)
        self.commission_rate = _dec(commission_rate)
        self.night_multiplier = _dec(night_multiplier)

    @classmethod
    def from_settings(cls) -> 'PricingCalculator':
        tariffs = {
            vehicle: Tariff(base=_dec(rates['base']), per_km=_dec(rates['per_km']))
            for vehicle, rates in settings.PRICING_TARIFFS.items()
        }
        return cls(
            tariffs=tariffs,
            free_km=settings.PRICING_FREE_KM,
            vat_rate=settings.PRICING_VAT_RATE,
            commission_rate=settings.PRICING_COMMISSION_RATE,
            night_multiplier=settings.PRICING_NIGHT_MULTIPLIER,
        )

    def get_tariff(self, vehicle_class: str) -> Tariff:
        try:
            return self.tariffs[vehicle_class]
        except KeyError:
            raise ValueError(f"Unknown vehicle class: {vehicle_class}")

    def split(self, total: Decimal):
        """Return (commission, payout) for a whole-unit total."""
        commission = (total * self.commission_rate).to_integral_value(rounding=ROUND_FLOOR)
        return commission, total - commission

    def _billable(self, distance_km: Decimal) -> Decimal:
        if distance_km < 0:
            raise ValueError("Distance cannot be negative")
        return max(Decimal('0'), distance_km - self.free_km)

    def price(self, distance_km, vehicle_class: str, is_night_window: bool = False) -> PriceBreakdown:
        tariff = self.get_tariff(vehicle_class)
        distance = _dec(distance_km)
        billable_km = self._billable(distance)

        pre_vat = tariff.base + billable_km * tariff.per_km
        if is_night_window:
            pre_vat = pre_vat * self.night_multiplier

        vat = pre_vat * self.vat_rate
        total = (pre_vat + vat).to_integral_value(rounding=ROUND_CEILING)
        commission, payout = self.split(total)

        return PriceBreakdown(
            vehicle_class=vehicle_class,
            distance_km=distance.quantize(CENTS, rounding=ROUND_HALF_UP),
            base=tariff.base,
            per_km_rate=tariff.per_km,
            billable_km=billable_km.quantize(CENTS, rounding=ROUND_HALF_UP),
            price_before_vat=pre_vat.quantize(CENTS, rounding=ROUND_HALF_UP),
            vat=vat.quantize(CENTS, rounding=ROUND_HALF_UP),
            total=total.quantize(CENTS),
            commission=commission.quantize(CENTS),
            payout=payout.quantize(CENTS),
            is_night_window=is_night_window,
        )

    def price_override(
        self,
        final_total,
        distance_km,
        vehicle_class: str,
        is_night_window: bool = False,
    ) -> PriceBreakdown:
        """
        Operator-supplied final price.

        A fractional total is rounded up to the next whole unit like computed
        totals. VAT is backed out of the total; commission and payout use the
        same floor-then-subtract rule as computed prices.
        """
        tariff = self.get_tariff(vehicle_class)
        distance = _dec(distance_km)
        billable_km = self._billable(distance)

        total = _dec(final_total).to_integral_value(rounding=ROUND_CEILING)
        if total <= 0:
            raise ValueError("Override price must be positive")

        pre_vat = (total / (1 + self.vat_rate)).quantize(CENTS, rounding=ROUND_HALF_UP)
        vat = total - pre_vat
        commission, payout = self.split(total)

        return PriceBreakdown(
            vehicle_class=vehicle_class,
            distance_km=distance.quantize(CENTS, rounding=ROUND_HALF_UP),
            base=tariff.base,
            per_km_rate=tariff.per_km,
            billable_km=billable_km.quantize(CENTS, rounding=ROUND_HALF_UP),
            price_before_vat=pre_vat,
            vat=vat.quantize(CENTS),
            total=total.quantize(CENTS),
            commission=commission.quantize(CENTS),
            payout=payout.quantize(CENTS),
            is_night_window=is_night_window,
            overridden=True,
        )


def is_night_time(
    moment: Optional[datetime] = None,
    start_hour: Optional[int] = None,
    end_hour: Optional[int] = None,
) -> bool:
    """Night window check in local time, e.g. 22:00-06:00."""
    start = settings.PRICING_NIGHT_START_HOUR if start_hour is None else start_hour
    end = settings.PRICING_NIGHT_END_HOUR if end_hour is None else end_hour
    moment = moment or timezone.now()
    if timezone.is_aware(moment):
        moment = timezone.localtime(moment)

    hour = moment.hour
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end
