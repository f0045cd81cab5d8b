import sys
from pathlib import Path
import unittest
from unittest import mock

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.domain.errors import RemoteStoreError
from lifesim.infrastructure.resilient_http import (
    CircuitOpenError,
    ResourceBreakers,
    resource_for,
    send_rest_request,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _Backend:
    """Answers every request with a fixed status, or raises a timeout."""

    def __init__(self, status_code: int = 200, payload=None, *, timeout: bool = False) -> None:
        self.status_code = status_code
        self.payload = payload if payload is not None else [{"username": "Aurora4821"}]
        self.timeout = timeout
        self.paths: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        if self.timeout:
            raise httpx.ReadTimeout("timeout", request=request)
        return httpx.Response(self.status_code, json=self.payload)

    def client(self) -> httpx.Client:
        return httpx.Client(base_url="https://backend.test", transport=httpx.MockTransport(self))


class ResourceNameTests(unittest.TestCase):
    def test_tables_and_functions_are_separate_resources(self) -> None:
        self.assertEqual("users", resource_for("/rest/v1/users"))
        self.assertEqual("rpc/transfer_funds", resource_for("/rest/v1/rpc/transfer_funds"))
        self.assertEqual("inventory", resource_for("/rest/v1/inventory?select=*"))


class SendRestRequestTests(unittest.TestCase):
    def test_returns_decoded_rows(self) -> None:
        backend = _Backend()

        rows = send_rest_request(backend.client(), "GET", "/rest/v1/users")

        self.assertEqual("Aurora4821", rows[0]["username"])

    def test_reads_are_retried(self) -> None:
        backend = _Backend(timeout=True)

        with self.assertRaises(httpx.TimeoutException):
            send_rest_request(backend.client(), "GET", "/rest/v1/users", retries=2, backoff_seconds=0)

        self.assertEqual(3, len(backend.paths))

    def test_writes_and_rpc_calls_are_sent_once(self) -> None:
        backend = _Backend(status_code=503)
        client = backend.client()

        for method, path in (("POST", "/rest/v1/rpc/transfer_funds"), ("PATCH", "/rest/v1/users"), ("DELETE", "/rest/v1/inventory")):
            with self.subTest(method=method):
                before = len(backend.paths)
                with self.assertRaises(httpx.HTTPStatusError):
                    send_rest_request(client, method, path, retries=3, backoff_seconds=0)
                self.assertEqual(before + 1, len(backend.paths))

    def test_client_errors_do_not_trip_the_breaker(self) -> None:
        backend = _Backend(status_code=400, payload={"message": "bad filter"})
        breakers = ResourceBreakers(threshold=1)

        with self.assertRaises(httpx.HTTPStatusError):
            send_rest_request(backend.client(), "GET", "/rest/v1/users", breakers=breakers, retries=3)

        self.assertEqual(1, len(backend.paths))
        self.assertFalse(breakers.is_open("users"))


class ResourceBreakerTests(unittest.TestCase):
    def test_breaker_opens_per_resource(self) -> None:
        clock = _Clock()
        breakers = ResourceBreakers(threshold=2, cooldown_seconds=60, clock=clock)
        client = _Backend(timeout=True).client()

        with self.assertLogs("lifesim.infrastructure.resilient_http", level="WARNING"):
            for _ in range(2):
                with self.assertRaises(httpx.TimeoutException):
                    send_rest_request(client, "GET", "/rest/v1/inventory", breakers=breakers)

        with self.assertRaises(CircuitOpenError) as ctx:
            send_rest_request(client, "GET", "/rest/v1/inventory", breakers=breakers)
        self.assertIsInstance(ctx.exception, RemoteStoreError)
        self.assertEqual("inventory", ctx.exception.resource)
        self.assertEqual(1060.0, ctx.exception.retry_at)

        healthy = _Backend()
        self.assertEqual([{"username": "Aurora4821"}], send_rest_request(healthy.client(), "GET", "/rest/v1/users", breakers=breakers))

    def test_half_open_call_closes_or_reopens(self) -> None:
        clock = _Clock()
        breakers = ResourceBreakers(threshold=2, cooldown_seconds=60, clock=clock)
        breakers.failed("rpc/decrease_hunger")
        breakers.failed("rpc/decrease_hunger")
        clock.now += 61

        breakers.check("rpc/decrease_hunger")
        breakers.failed("rpc/decrease_hunger")
        self.assertTrue(breakers.is_open("rpc/decrease_hunger"))

        clock.now += 61
        breakers.check("rpc/decrease_hunger")
        breakers.succeeded("rpc/decrease_hunger")
        self.assertFalse(breakers.is_open("rpc/decrease_hunger"))
        breakers.failed("rpc/decrease_hunger")
        self.assertFalse(breakers.is_open("rpc/decrease_hunger"))

    def test_disabled_breakers_never_open(self) -> None:
        breakers = ResourceBreakers(enabled=False, threshold=1)

        breakers.failed("users")
        breakers.check("users")

        self.assertFalse(breakers.is_open("users"))

    def test_environment_settings(self) -> None:
        with mock.patch.dict(
            "os.environ",
            {
                "LIFESIM_HTTP_CIRCUIT_BREAKER_ENABLED": "yes",
                "LIFESIM_HTTP_CIRCUIT_FAILURE_THRESHOLD": "5",
                "LIFESIM_HTTP_CIRCUIT_RESET_SECONDS": "30",
            },
        ):
            breakers = ResourceBreakers.from_env()

        self.assertTrue(breakers.enabled)
        self.assertEqual(5, breakers.threshold)
        self.assertEqual(30.0, breakers.cooldown_seconds)


if __name__ == "__main__":
    unittest.main()
