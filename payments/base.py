from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class VerifyStatus:
    PAID = "PAID"
    PENDING = "PENDING"
    FAILED = "FAILED"


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChargeResult:
    ok: bool
    provider: str
    external_id: Optional[str] = None
    reason: Optional[str] = None


class PaymentRail:
    """Common capability set of every payment rail.

    Callers use create_session() to send the payer somewhere and verify()
    to learn whether a provider reference settled.
    """

    name = "base"
    provider = "NONE"

    def create_session(self, **kwargs) -> CheckoutSession:  # pragma: no cover - interface
        raise NotImplementedError

    def verify(self, payment_id: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError
