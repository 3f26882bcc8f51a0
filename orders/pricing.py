"""
Order pricing - recomputes totals from authoritative menu data.

Clients send their own subtotal and total; neither is trusted. Each line is
re-priced from the current menu, fees are derived from the recomputed
subtotal, and the declared figures must agree within a paise or two.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from django.conf import settings

from core.exceptions import ItemUnavailable, PriceMismatch
from restaurants.services import get_menu_item

logger = logging.getLogger(__name__)

PAISE = Decimal('0.01')


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(PAISE, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeePolicy:
    """
    Fee rules applied on top of the item subtotal.

    Delivery and platform fees are waived once the subtotal reaches their
    threshold; GST is a flat percentage of the subtotal.
    """
    delivery_fee: Decimal = Decimal('20')
    free_delivery_threshold: Decimal = Decimal('500')
    packing_fee: Decimal = Decimal('5')
    gst_rate: Decimal = Decimal('0.05')
    platform_fee: Decimal = Decimal('2')
    free_platform_fee_threshold: Decimal = Decimal('300')

    @classmethod
    def from_settings(cls) -> 'FeePolicy':
        return cls(**getattr(settings, 'ORDER_FEE_POLICY', {}))

    def breakdown(self, subtotal: Decimal) -> 'PriceBreakdown':
        delivery = Decimal('0') if subtotal >= self.free_delivery_threshold else self.delivery_fee
        platform = Decimal('0') if subtotal >= self.free_platform_fee_threshold else self.platform_fee
        gst = subtotal * self.gst_rate
        return PriceBreakdown(
            subtotal=subtotal,
            delivery_fee=delivery,
            packing_fee=self.packing_fee,
            gst_amount=gst,
            platform_fee=platform,
            total=subtotal + delivery + self.packing_fee + gst + platform,
        )


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    delivery_fee: Decimal
    packing_fee: Decimal
    gst_amount: Decimal
    platform_fee: Decimal
    total: Decimal

    def as_dict(self) -> Dict[str, str]:
        return {
            'subtotal': str(to_money(self.subtotal)),
            'delivery_fee': str(to_money(self.delivery_fee)),
            'packing_fee': str(to_money(self.packing_fee)),
            'gst_amount': str(to_money(self.gst_amount)),
            'platform_fee': str(to_money(self.platform_fee)),
            'total': str(to_money(self.total)),
        }


@dataclass(frozen=True)
class PricedLine:
    menu_item_id: int
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class PricedOrder:
    lines: List[PricedLine] = field(default_factory=list)
    breakdown: Optional[PriceBreakdown] = None

    @property
    def total(self) -> Decimal:
        return to_money(self.breakdown.total)


def verify_order_pricing(
    restaurant_uid: str,
    items: List[Dict],
    declared_subtotal=None,
    declared_total=None,
    policy: Optional[FeePolicy] = None,
) -> PricedOrder:
    """
    Re-price ``items`` against the restaurant's current menu.

    Args:
        restaurant_uid: Restaurant the order is placed with
        items: List of dicts with 'menu_item_id' and 'quantity'
        declared_subtotal: Client subtotal, checked when supplied
        declared_total: Client total including fees
        policy: Fee rules, defaults to settings.ORDER_FEE_POLICY

    Raises:
        ItemUnavailable: A line references a missing, unavailable or
            deleted item, or one from another restaurant
        PriceMismatch: Declared figures disagree with the recomputation
    """
    policy = policy or FeePolicy.from_settings()
    priced = PricedOrder()

    subtotal = Decimal('0')
    for item in items:
        menu_item = get_menu_item(item['menu_item_id'], restaurant_uid)
        if menu_item is None:
            raise ItemUnavailable(f"Menu item {item['menu_item_id']} not found or unavailable")
        line = PricedLine(
            menu_item_id=menu_item.id,
            name=menu_item.name,
            quantity=int(item['quantity']),
            unit_price=menu_item.price,
        )
        priced.lines.append(line)
        subtotal += line.subtotal

    if declared_subtotal is not None:
        declared_subtotal = Decimal(str(declared_subtotal))
        if abs(subtotal - declared_subtotal) > settings.ORDER_SUBTOTAL_TOLERANCE:
            raise PriceMismatch(
                f"Subtotal mismatch: calculated ₹{to_money(subtotal)}, received ₹{to_money(declared_subtotal)}",
                details={'calculated_subtotal': str(to_money(subtotal))},
            )

    priced.breakdown = policy.breakdown(subtotal)

    declared_total = Decimal(str(declared_total))
    if abs(priced.breakdown.total - declared_total) > settings.ORDER_TOTAL_TOLERANCE:
        logger.warning(
            f"Price calculation mismatch for restaurant {restaurant_uid}: "
            f"expected {priced.breakdown.as_dict()}, received total ₹{declared_total}"
        )
        raise PriceMismatch(
            f"Total amount mismatch: expected ₹{priced.total}, received ₹{to_money(declared_total)}",
            details={'expected': priced.breakdown.as_dict()},
        )

    return priced
