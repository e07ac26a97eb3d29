"""
Charge calculation for a truck's rate card.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from freight.errors import ConfigurationError, ValidationError

TWO_PLACES = Decimal("0.01")
WHOLE_UNIT = Decimal("1")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Quote:
    distance_km: Decimal
    rate_per_km: Decimal
    minimum_charge: Decimal
    base_amount: Decimal
    estimated_amount: Decimal

    @property
    def minimum_applied(self) -> bool:
        return self.estimated_amount > self.base_amount


def require_rate_card(truck) -> tuple[Decimal, Decimal]:
    """Return (rate_per_km, minimum_charge) or raise if the truck is not priced."""
    rate = truck.rate_per_km
    minimum = truck.minimum_charge
    if not rate or not minimum:
        raise ConfigurationError(
            "Truck rates are not properly configured",
            truck_id=truck.id,
        )
    return Decimal(str(rate)), Decimal(str(minimum))


def quote_charge(distance_km: float, rate_per_km, minimum_charge) -> Quote:
    """
    final = max(distance * rate, minimum)

    Computed from scratch on every call; edits never adjust a previous quote.
    """
    if distance_km is None or distance_km < 0:
        raise ValidationError("Distance must be a non-negative number")
    distance = Decimal(str(distance_km)).quantize(Decimal("0.001"), rounding=ROUND_HALF_UP)
    rate = Decimal(str(rate_per_km))
    minimum = Decimal(str(minimum_charge))
    if rate < 0 or minimum < 0:
        raise ConfigurationError("Truck rates must not be negative")

    base = to_money(Decimal(str(distance_km)) * rate)
    return Quote(
        distance_km=distance,
        rate_per_km=to_money(rate),
        minimum_charge=to_money(minimum),
        base_amount=base,
        estimated_amount=max(base, to_money(minimum)),
    )


def to_transferable_amount(amount) -> Decimal:
    """Round to the payment provider's smallest transferable unit (whole shillings)."""
    return Decimal(str(amount)).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)
