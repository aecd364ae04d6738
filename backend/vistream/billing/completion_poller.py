"""Client-side completion polling against ``POST /api/payments/complete``.

After the provider redirects the customer back, the webhook may not have
landed yet. The poller asks the backend to complete the payment and keeps
asking, a bounded number of times, while the answer is "not ready".
Giving up is reported as ``pending``, never as a failed payment.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_PENDING = "pending"
OUTCOME_FAILED = "failed"

NOT_READY_CODE = "payment_not_ready"
PENDING_MESSAGE = (
    "Votre paiement est toujours en cours de traitement. "
    "Votre abonnement sera activé dès sa confirmation, revenez dans quelques minutes."
)


@dataclass
class PollResult:
    outcome: str
    message: str
    attempts: int
    payment_id: str | None = None
    subscription: dict[str, Any] | None = None
    code: str | None = None


class CompletionPoller:
    """Drive the completion endpoint until it succeeds, fails, or attempts run out.

    ``client`` must already carry the base URL and the caller's credentials.
    The delay before attempt ``n`` (n >= 2) is ``interval + backoff * (n - 2)``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_attempts: int = 10,
        interval: float = 3.0,
        backoff: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.max_attempts = max_attempts
        self.interval = interval
        self.backoff = backoff
        self._sleep = sleep

    async def resolve_payment_id(self) -> str | None:
        """Id of the caller's most recent payment, if any."""
        response = await self.client.get("/api/payments/latest")
        if response.status_code != 200:
            logger.info("No latest payment available (HTTP %s)", response.status_code)
            return None
        payment = response.json().get("payment") or {}
        return payment.get("id") or payment.get("databaseId")

    async def run(
        self,
        payment_id: str | None = None,
        session_type: str | None = None,
        provider: str | None = None,
    ) -> PollResult:
        if payment_id is None:
            payment_id = await self.resolve_payment_id()
            if payment_id is None:
                return PollResult(OUTCOME_FAILED, "Paiement non trouvé", 0, code="payment_not_found")

        body: dict[str, Any] = {"paymentId": payment_id}
        if session_type:
            body["sessionType"] = session_type
        if provider:
            body["provider"] = provider

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                await self._sleep(self.interval + self.backoff * (attempt - 2))

            try:
                response = await self.client.post("/api/payments/complete", json=body)
            except httpx.HTTPError as e:
                logger.warning("Completion attempt %d/%d for %s failed: %s", attempt, self.max_attempts, payment_id, e)
                continue

            try:
                data = response.json()
            except ValueError:
                data = {}

            if response.status_code == 200 and data.get("success"):
                logger.info("Payment %s completed after %d attempt(s)", payment_id, attempt)
                return PollResult(
                    OUTCOME_COMPLETED,
                    data.get("message", ""),
                    attempt,
                    payment_id=payment_id,
                    subscription=data.get("subscription"),
                )

            code = data.get("code")
            if code == NOT_READY_CODE:
                logger.debug("Payment %s not ready (attempt %d/%d)", payment_id, attempt, self.max_attempts)
                continue

            if response.status_code >= 500:
                logger.warning("Completion attempt %d for %s returned HTTP %s", attempt, payment_id, response.status_code)
                continue

            logger.info("Payment %s cannot be completed: %s", payment_id, code)
            return PollResult(
                OUTCOME_FAILED,
                data.get("error") or data.get("detail") or "Erreur serveur",
                attempt,
                payment_id=payment_id,
                code=code,
            )

        logger.info("Gave up waiting for payment %s after %d attempts", payment_id, self.max_attempts)
        return PollResult(OUTCOME_PENDING, PENDING_MESSAGE, self.max_attempts, payment_id=payment_id, code=NOT_READY_CODE)
