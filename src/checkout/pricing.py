import logging
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from typing import List, Optional

from pydantic import BaseModel, Field

from src.config import settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class PriceAdjustment(BaseModel):
    original_amount: Decimal
    amount: Decimal
    currency: str = "USD"
    changes: List[str] = Field(default_factory=list)

    @property
    def applied(self) -> bool:
        return bool(self.changes)


class PriceAdjuster:
    """Retail price rule shared by search results and invoices.

    ``base + base*markup% + charges - base*discount%`` when enabled, then
    optional rounding to ``round_to_nearest``, then (when enabled) any
    fractional part is rounded up to the next whole unit. Never negative.
    """

    def __init__(
        self,
        apply: bool = False,
        markup: Decimal = Decimal("0"),
        charges: Decimal = Decimal("0"),
        discount: Decimal = Decimal("0"),
        round_to_nearest: Decimal = Decimal("0"),
    ):
        self.apply = apply
        self.markup = Decimal(str(markup))
        self.charges = Decimal(str(charges))
        self.discount = Decimal(str(discount))
        self.round_to_nearest = Decimal(str(round_to_nearest))

    @classmethod
    def from_settings(cls) -> "PriceAdjuster":
        return cls(
            apply=settings.PRICING_APPLY,
            markup=settings.PRICING_MARKUP,
            charges=settings.PRICING_CHARGES,
            discount=settings.PRICING_DISCOUNT,
            round_to_nearest=settings.PRICING_ROUND_TO_NEAREST,
        )

    def adjust(self, base_amount, currency: Optional[str] = None) -> PriceAdjustment:
        original = Decimal(str(base_amount or 0))
        amount = original
        changes = []

        if self.apply:
            markup_amount = original * self.markup / HUNDRED
            discount_amount = original * self.discount / HUNDRED
            amount = original + markup_amount + self.charges - discount_amount
            changes.append(
                f"base {original:.2f} + markup {self.markup}% ({markup_amount:.2f}) + charges "
                f"{self.charges:.2f} - discount {self.discount}% ({discount_amount:.2f}) = {amount:.2f}"
            )

        if self.round_to_nearest > 0:
            before = amount
            steps = (amount / self.round_to_nearest).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            amount = steps * self.round_to_nearest
            changes.append(f"rounded to nearest {self.round_to_nearest} ({before:.2f} -> {amount:.2f})")

        if self.apply and amount != amount.to_integral_value(rounding=ROUND_CEILING):
            before = amount
            amount = amount.to_integral_value(rounding=ROUND_CEILING)
            changes.append(f"rounded up to whole unit ({before:.2f} -> {amount:.2f})")

        amount = max(Decimal("0"), amount).quantize(CENT, rounding=ROUND_HALF_UP)

        if changes:
            logger.debug(
                "Price adjusted",
                extra={"original_amount": str(original), "adjusted_amount": str(amount), "changes": changes}
            )

        return PriceAdjustment(
            original_amount=original,
            amount=amount,
            currency=currency or "USD",
            changes=changes,
        )
