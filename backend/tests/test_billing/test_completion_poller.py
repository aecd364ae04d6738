"""Tests for the completion poller against a scripted completion endpoint."""

import json

import httpx
import pytest

from vistream.billing.completion_poller import (
    NOT_READY_CODE,
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_PENDING,
    PENDING_MESSAGE,
    CompletionPoller,
)

NOT_READY = (400, {"success": False, "error": "Le paiement est en cours de traitement.", "code": NOT_READY_CODE})
COMPLETED = (
    200,
    {
        "success": True,
        "message": "Abonnement activé avec succès",
        "operation": "subscription",
        "subscription": {"id": "sub-1", "status": "active"},
    },
)


class _ScriptedBackend:
    """Answers POST /api/payments/complete from a list of (status, body) replies."""

    def __init__(self, replies, latest=None):
        self.replies = list(replies)
        self.latest = latest
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/payments/latest":
            if self.latest is None:
                return httpx.Response(404, json={"success": False, "error": "Paiement non trouvé"})
            return httpx.Response(200, json={"success": True, "payment": self.latest})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        status, body = reply
        return httpx.Response(status, json=body)

    @property
    def complete_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/api/payments/complete"]


class _FakeSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _poller(backend: _ScriptedBackend, sleep: _FakeSleep, **kwargs) -> CompletionPoller:
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend), base_url="http://testserver")
    return CompletionPoller(client, sleep=sleep, **kwargs)


class TestCompletionPoller:
    async def test_completes_after_not_ready_replies(self):
        backend = _ScriptedBackend([NOT_READY, NOT_READY, COMPLETED])
        sleep = _FakeSleep()

        result = await _poller(backend, sleep, max_attempts=5, interval=3.0).run("tr_abc", session_type="subscription")

        assert result.outcome == OUTCOME_COMPLETED
        assert result.attempts == 3
        assert result.message == "Abonnement activé avec succès"
        assert result.subscription == {"id": "sub-1", "status": "active"}
        assert sleep.delays == [3.0, 3.0]
        body = json.loads(backend.complete_calls[0].content)
        assert body == {"paymentId": "tr_abc", "sessionType": "subscription"}

    async def test_first_attempt_does_not_sleep(self):
        backend = _ScriptedBackend([COMPLETED])
        sleep = _FakeSleep()

        result = await _poller(backend, sleep).run("tr_abc")

        assert result.outcome == OUTCOME_COMPLETED
        assert sleep.delays == []

    async def test_gives_up_as_pending(self):
        backend = _ScriptedBackend([NOT_READY] * 4)
        sleep = _FakeSleep()

        result = await _poller(backend, sleep, max_attempts=4, interval=1.0).run("tr_abc")

        assert result.outcome == OUTCOME_PENDING
        assert result.message == PENDING_MESSAGE
        assert result.code == NOT_READY_CODE
        assert result.attempts == 4
        assert len(backend.complete_calls) == 4

    async def test_backoff_grows_delay(self):
        backend = _ScriptedBackend([NOT_READY] * 3)
        sleep = _FakeSleep()

        await _poller(backend, sleep, max_attempts=3, interval=2.0, backoff=1.5).run("tr_abc")

        assert sleep.delays == [2.0, 3.5]

    async def test_terminal_error_stops_immediately(self):
        backend = _ScriptedBackend(
            [(400, {"success": False, "error": "Paiement pas encore complété", "code": "payment_not_completed"})]
        )
        sleep = _FakeSleep()

        result = await _poller(backend, sleep, max_attempts=5).run("tr_abc")

        assert result.outcome == OUTCOME_FAILED
        assert result.code == "payment_not_completed"
        assert result.message == "Paiement pas encore complété"
        assert result.attempts == 1

    async def test_server_and_network_errors_are_retried(self):
        backend = _ScriptedBackend(
            [
                (500, {"success": False, "error": "Erreur serveur"}),
                httpx.ConnectError("connection reset"),
                COMPLETED,
            ]
        )
        sleep = _FakeSleep()

        result = await _poller(backend, sleep, max_attempts=5).run("tr_abc")

        assert result.outcome == OUTCOME_COMPLETED
        assert result.attempts == 3

    async def test_resolves_latest_payment_when_id_missing(self):
        backend = _ScriptedBackend([COMPLETED], latest={"id": "tr_latest", "status": "completed"})
        sleep = _FakeSleep()

        result = await _poller(backend, sleep).run(provider="mollie")

        assert result.payment_id == "tr_latest"
        body = json.loads(backend.complete_calls[0].content)
        assert body == {"paymentId": "tr_latest", "provider": "mollie"}

    async def test_no_latest_payment(self):
        backend = _ScriptedBackend([])
        sleep = _FakeSleep()

        result = await _poller(backend, sleep).run()

        assert result.outcome == OUTCOME_FAILED
        assert result.code == "payment_not_found"
        assert result.attempts == 0


@pytest.mark.parametrize("attempts", [1, 2])
async def test_single_budget_never_reports_failure(attempts):
    backend = _ScriptedBackend([NOT_READY] * attempts)
    result = await _poller(backend, _FakeSleep(), max_attempts=attempts).run("tr_abc")
    assert result.outcome == OUTCOME_PENDING
