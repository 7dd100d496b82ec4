"""Fee calculation.

Fee structure (rates injected through ``FeeConfig``):

1. **Platform fee**: the marketplace's cut, ``platform_fee_rate`` of the amount.

2. **Payment fee**: depends on how the nurse is paid out:
   instant transfer (higher rate) or the scheduled monthly payout (lower rate).

Each fee is clamped independently to ``[minimum_fee, maximum_fee]``: small
amounts always pay the floor, large amounts are capped. The net payout is
never clamped, so an amount below twice the floor yields a negative net,
which callers must reject rather than floor.
"""

import enum
from dataclasses import dataclass, field
from decimal import Decimal

from marketplace.config import FeeConfig


class PaymentMethod(str, enum.Enum):
    INSTANT = "instant"
    SCHEDULED = "scheduled"


_DESCRIPTIONS = {
    PaymentMethod.INSTANT: "Instant transfer (higher fee)",
    PaymentMethod.SCHEDULED: "Scheduled payout on the 15th of the following month (lower fee)",
}


def clamp(value: Decimal, lo: Decimal, hi: Decimal) -> Decimal:
    """max(min(value, hi), lo). The floor wins if lo > hi."""
    return max(min(value, hi), lo)


@dataclass(frozen=True)
class FeeBreakdown:
    platform_fee_rate: Decimal
    payment_fee_rate: Decimal
    description: str

    def to_dict(self) -> dict:
        return {
            "platform_fee_rate": str(self.platform_fee_rate),
            "payment_fee_rate": str(self.payment_fee_rate),
            "description": self.description,
        }


@dataclass(frozen=True)
class FeeCalculation:
    base_amount: Decimal
    platform_fee: Decimal
    payment_fee: Decimal
    breakdown: FeeBreakdown
    total_fee: Decimal = field(init=False)
    net_amount: Decimal = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "total_fee", self.platform_fee + self.payment_fee)
        object.__setattr__(self, "net_amount", self.base_amount - self.total_fee)

    @property
    def is_payable(self) -> bool:
        return self.net_amount >= 0

    def to_dict(self) -> dict:
        return {
            "base_amount": str(self.base_amount),
            "platform_fee": str(self.platform_fee),
            "payment_fee": str(self.payment_fee),
            "total_fee": str(self.total_fee),
            "net_amount": str(self.net_amount),
            "fee_breakdown": self.breakdown.to_dict(),
        }


class FeeCalculator:
    """Pure fee computation over an injected fee schedule. No I/O."""

    def __init__(self, config: FeeConfig | None = None) -> None:
        self.config = config or FeeConfig()

    def payment_fee_rate(self, method: PaymentMethod) -> Decimal:
        if method == PaymentMethod.INSTANT:
            return self.config.instant_payment_fee_rate
        return self.config.scheduled_payment_fee_rate

    def platform_fee(self, amount: Decimal) -> Decimal:
        return clamp(
            amount * self.config.platform_fee_rate,
            self.config.minimum_fee,
            self.config.maximum_fee,
        )

    def calculate(self, amount: Decimal, payment_method: PaymentMethod | str) -> FeeCalculation:
        if amount <= 0:
            raise ValueError("Amount must be positive")
        method = PaymentMethod(payment_method)
        rate = self.payment_fee_rate(method)
        payment_fee = clamp(amount * rate, self.config.minimum_fee, self.config.maximum_fee)
        return FeeCalculation(
            base_amount=amount,
            platform_fee=self.platform_fee(amount),
            payment_fee=payment_fee,
            breakdown=FeeBreakdown(
                platform_fee_rate=self.config.platform_fee_rate,
                payment_fee_rate=rate,
                description=_DESCRIPTIONS[method],
            ),
        )

    def schedule(self) -> dict:
        """Current fee schedule for display to organizers and nurses."""
        c = self.config
        return {
            "currency": c.currency,
            "platform_fee": {
                "rate_percent": str(c.platform_fee_rate * 100),
                "charged_to": "Escrowed amount",
            },
            "payment_fee": {
                PaymentMethod.INSTANT.value: {
                    "rate_percent": str(c.instant_payment_fee_rate * 100),
                    "description": _DESCRIPTIONS[PaymentMethod.INSTANT],
                },
                PaymentMethod.SCHEDULED.value: {
                    "rate_percent": str(c.scheduled_payment_fee_rate * 100),
                    "description": _DESCRIPTIONS[PaymentMethod.SCHEDULED],
                },
            },
            "minimum_fee": str(c.minimum_fee),
            "maximum_fee": str(c.maximum_fee),
            "note": "Each fee is clamped to [minimum_fee, maximum_fee] independently. "
                    f"Amounts below {c.minimum_fee * 2} {c.currency} leave nothing to pay out.",
        }


def calculate_fees(
    amount: Decimal, payment_method: PaymentMethod | str, config: FeeConfig | None = None
) -> FeeCalculation:
    return FeeCalculator(config).calculate(amount, payment_method)
