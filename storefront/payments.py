"""Payment gateway adapters used by checkout for immediate-settlement methods."""

from __future__ import annotations

import logging
import os
import random
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

import stripe
from dotenv import load_dotenv

from .errors import PaymentProviderError, Unavailable

load_dotenv()

logger = logging.getLogger(__name__)

PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "simulated")
PAYMENT_DECLINE_RATE = float(os.getenv("PAYMENT_DECLINE_RATE", "0.1"))
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "cop")


@dataclass(frozen=True)
class PaymentResult:
    status: str  # "completed" | "pending" | "failed"
    reference: Optional[str] = None
    reason: Optional[str] = None

    @property
    def declined(self) -> bool:
        return self.status == "failed"

    @property
    def charged(self) -> bool:
        """True when money may have moved and the reference must not be lost."""
        return self.reference is not None and not self.declined


class PaymentGateway:
    def charge(
        self,
        *,
        amount: int,
        method: str,
        token: Optional[str],
        idempotency_key: Optional[str],
        metadata: Dict[str, str],
    ) -> PaymentResult:
        raise NotImplementedError


class SimulatedGateway(PaymentGateway):
    """Settles payments locally, declining a configurable share of them."""

    def __init__(self, decline_rate: float = PAYMENT_DECLINE_RATE, error_rate: float = 0.0, rng: Optional[random.Random] = None):
        self.decline_rate = decline_rate
        self.error_rate = error_rate
        self.rng = rng or random.Random()

    def charge(self, *, amount, method, token, idempotency_key, metadata) -> PaymentResult:
        if self.rng.random() < self.error_rate:
            raise Unavailable("Payment provider did not answer")

        reference = f"sim_{uuid.uuid4().hex[:16]}"
        if self.rng.random() < self.decline_rate:
            return PaymentResult(status="failed", reference=reference, reason="Payment declined by issuer")
        return PaymentResult(status="completed", reference=reference)


class StripeGateway(PaymentGateway):
    """Confirms a PaymentIntent synchronously with the token sent by the client."""

    def __init__(self, secret_key: str = STRIPE_SECRET_KEY, currency: str = STRIPE_CURRENCY):
        if not secret_key:
            raise RuntimeError("Stripe is not configured. Set STRIPE_SECRET_KEY.")
        self.secret_key = secret_key
        self.currency = currency

    def charge(self, *, amount, method, token, idempotency_key, metadata) -> PaymentResult:
        if not token:
            return PaymentResult(status="failed", reason="Missing payment method")

        stripe.api_key = self.secret_key
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=self.currency,
                payment_method=token,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={**metadata, "payment_method": method},
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            return PaymentResult(status="failed", reason=e.user_message or str(e))
        except stripe.InvalidRequestError as e:
            return PaymentResult(status="failed", reason=str(e))
        except stripe.IdempotencyError as e:
            return PaymentResult(status="failed", reason=f"Conflicting payment attempt: {str(e)}")
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            raise Unavailable(f"Payment provider is unavailable: {str(e)}") from e
        except stripe.StripeError as e:
            # authentication, permission and account errors
            logger.error("stripe rejected the charge request: %s", e)
            raise PaymentProviderError(f"Payment provider rejected the request: {e.__class__.__name__}") from e

        if intent.status == "succeeded":
            return PaymentResult(status="completed", reference=intent.id)
        if intent.status == "processing":
            return PaymentResult(status="pending", reference=intent.id)
        return PaymentResult(status="failed", reference=intent.id, reason=f"PaymentIntent status: {intent.status}")


def get_payment_gateway() -> PaymentGateway:
    if PAYMENT_PROVIDER == "stripe":
        return StripeGateway()
    return SimulatedGateway()
