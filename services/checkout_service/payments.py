import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Protocol

from shared.clock import utcnow

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DECLINE_REASON = "Payment declined by processor"


@dataclass
class ChargeResult:
    success: bool
    gateway_response: Dict[str, Any] = field(default_factory=dict)
    failure_reason: Optional[str] = None
    card_last_four: Optional[str] = None
    card_brand: Optional[str] = None


class PaymentGateway(Protocol):
    name: str

    async def charge(self, amount: Decimal, method: str) -> ChargeResult:
        ...


class SimulatedGateway:
    """
    Stand-in for a real processor: waits, then succeeds with a fixed
    probability (``rng.randint(1, 100) <= success_percent``).
    """

    name = "simulated"

    def __init__(
        self,
        delay_seconds: float = 2.0,
        success_percent: int = 95,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.delay_seconds = delay_seconds
        self.success_percent = success_percent
        self.rng = rng or random.Random()
        self.clock = clock

    async def charge(self, amount: Decimal, method: str) -> ChargeResult:
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        approved = self.rng.randint(1, 100) <= self.success_percent
        logger.info("Simulated charge amount=%s method=%s approved=%s", amount, method, approved)

        if approved:
            return ChargeResult(
                success=True,
                gateway_response={
                    "success": True,
                    "message": "Payment processed successfully",
                    "timestamp": self.clock().isoformat(),
                },
            )
        return ChargeResult(
            success=False,
            gateway_response={
                "success": False,
                "message": DECLINE_REASON,
                "timestamp": self.clock().isoformat(),
            },
            failure_reason=DECLINE_REASON,
        )
