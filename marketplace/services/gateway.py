"""Payment gateway backends.

The escrow ledger only knows the ``PaymentGateway`` protocol. The mock
backend always succeeds; a real processor plugs in by implementing
``charge`` and registering itself in ``build_payment_gateway``.
"""

import random
import string
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from marketplace.config import Settings

_BASE36 = string.digits + string.ascii_lowercase


class PaymentGatewayError(Exception):
    """The gateway could not be reached or rejected the charge."""


@dataclass(frozen=True)
class ChargeResult:
    success: bool
    transaction_id: str | None = None
    error: str | None = None


class PaymentGateway(Protocol):
    async def charge(self, escrow_id: uuid.UUID, amount: Decimal) -> ChargeResult: ...


class MockPaymentGateway:
    """Always succeeds with a synthetic ``mock_tx_<ms>_<9 base-36 chars>`` id."""

    name = "mock"

    async def charge(self, escrow_id: uuid.UUID, amount: Decimal) -> ChargeResult:
        suffix = "".join(random.choices(_BASE36, k=9))
        return ChargeResult(success=True, transaction_id=f"mock_tx_{int(time.time() * 1000)}_{suffix}")


_GATEWAYS: dict[str, type] = {
    MockPaymentGateway.name: MockPaymentGateway,
}


def build_payment_gateway(s: Settings) -> PaymentGateway:
    try:
        return _GATEWAYS[s.payment_gateway]()
    except KeyError:
        raise ValueError(f"Unknown payment gateway: {s.payment_gateway}") from None
