#!/usr/bin/env python3
"""
Tests for the document intelligence client (upload, poll, fetch).
"""

import asyncio
import json
import sys
import unittest
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from quote_intake.clock import FakeClock
from quote_intake.error_classifier import ErrorKind
from quote_intake.exceptions import (
    CircuitOpenError,
    DocumentServiceError,
    JobFailedError,
    JobTimeoutError,
)
from quote_intake.llamaparse_client import (
    LLAMAPARSE_BREAKER,
    STATUS_SERVICE,
    UPLOAD_SERVICE,
    DocumentIntelligenceClient,
    RawResult,
    WrappedResult,
    decode_result_body,
    unwrap_result,
)
from quote_intake.models import JobStatus
from quote_intake.resilient_executor import ResilienceRegistry, ResilientExecutor

BASE_URL = "https://llama.test"


class FakeService:
    """Scripted responses per endpoint; the last response repeats."""

    def __init__(self, upload=None, status=None, result=None):
        self.scripts = {"upload": upload or [], "status": status or [], "result": result or []}
        self.requests = []

    def _next(self, name):
        script = self.scripts[name]
        response = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(response, Exception):
            raise response
        return response

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path
        if path == "/api/v1/parsing/upload":
            return self._next("upload")
        if path.endswith("/result/markdown"):
            return self._next("result")
        if path.startswith("/api/v1/parsing/job/"):
            return self._next("status")
        if path == "/api/health":
            return httpx.Response(200)
        return httpx.Response(404)


def status(value, error=None):
    body = {"status": value}
    if error:
        body["error"] = error
    return httpx.Response(200, json=body)


class ClientTestCase(unittest.IsolatedAsyncioTestCase):

    def make_client(self, service, poll_max_attempts=5, poll_interval=10.0):
        self.clock = FakeClock()
        self.registry = ResilienceRegistry(self.clock)
        self.http = httpx.AsyncClient(transport=httpx.MockTransport(service))
        return DocumentIntelligenceClient(
            api_key="secret-key",
            base_url=BASE_URL,
            http_client=self.http,
            executor=ResilientExecutor(self.registry, rand=lambda: 0.0),
            poll_interval=poll_interval,
            poll_max_attempts=poll_max_attempts,
        )

    async def asyncTearDown(self):
        await self.http.aclose()


class TestUpload(ClientTestCase):

    async def test_upload_returns_job_id(self):
        service = FakeService(upload=[httpx.Response(200, json={"id": "job-1", "status": "PENDING"})])
        client = self.make_client(service)

        job_id = await client.upload_document(b"%PDF-1.7 data")

        self.assertEqual(job_id, "job-1")
        request = service.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.headers["Authorization"], "Bearer secret-key")
        body = request.content
        self.assertIn(b'name="parse_mode"', body)
        self.assertIn(b"parse_page_with_agent", body)
        self.assertIn(b'name="output_tables_as_HTML"', body)
        self.assertIn(b'filename="document.pdf"', body)

    async def test_upload_without_id_fails(self):
        service = FakeService(upload=[httpx.Response(200, json={"status": "PENDING"})])
        client = self.make_client(service)

        with self.assertRaises(DocumentServiceError) as ctx:
            await client.upload_document(b"data")
        self.assertIn("No job ID", str(ctx.exception))

    async def test_upload_retries_server_errors(self):
        service = FakeService(upload=[
            httpx.Response(503),
            httpx.Response(200, json={"id": "job-2"}),
        ])
        client = self.make_client(service)

        self.assertEqual(await client.upload_document(b"data"), "job-2")
        self.assertEqual(len(service.requests), 2)
        self.assertEqual(self.clock.sleeps, [2.0])

    async def test_auth_failure_message(self):
        service = FakeService(upload=[httpx.Response(401)])
        client = self.make_client(service)

        with self.assertRaises(DocumentServiceError) as ctx:
            await client.upload_document(b"data")
        self.assertEqual(ctx.exception.kind, ErrorKind.AUTH)
        self.assertIn("authentication failed", str(ctx.exception))
        self.assertEqual(len(service.requests), 1)

    async def test_rate_limit_message_after_exhaustion(self):
        service = FakeService(upload=[httpx.Response(429, headers={"Retry-After": "1"})])
        client = self.make_client(service)

        with self.assertRaises(DocumentServiceError) as ctx:
            await client.upload_document(b"data")
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMIT)
        self.assertIn("rate limit exceeded", str(ctx.exception))
        self.assertEqual(len(service.requests), 5)

    async def test_open_circuit_is_not_rewrapped(self):
        service = FakeService(upload=[httpx.Response(400)])
        client = self.make_client(service)
        for _ in range(5):
            with self.assertRaises(DocumentServiceError):
                await client.upload_document(b"data")

        with self.assertRaises(CircuitOpenError):
            await client.upload_document(b"data")
        self.assertEqual(len(service.requests), 5)
        self.assertTrue(any(s.service_name == UPLOAD_SERVICE for s in self.registry.circuit_breaker_stats()))


class TestWaitForCompletion(ClientTestCase):

    async def test_polls_until_success(self):
        service = FakeService(status=[status("PENDING"), status("PENDING"), status("SUCCESS")])
        client = self.make_client(service)

        job = await client.wait_for_completion("job-1")

        self.assertEqual(job.status, JobStatus.SUCCESS)
        self.assertEqual(job.polls, 3)
        self.assertEqual(self.clock.sleeps, [10.0, 10.0])

    async def test_error_status_fails_with_reason(self):
        service = FakeService(status=[status("PENDING"), status("ERROR", "unsupported file")])
        client = self.make_client(service)

        with self.assertRaises(JobFailedError) as ctx:
            await client.wait_for_completion("job-1")
        self.assertEqual(ctx.exception.reason, "unsupported file")
        self.assertIn("unsupported file", str(ctx.exception))

    async def test_budget_exhaustion_times_out(self):
        service = FakeService(status=[status("PENDING")])
        client = self.make_client(service, poll_max_attempts=3)

        with self.assertRaises(JobTimeoutError) as ctx:
            await client.wait_for_completion("job-1")
        self.assertEqual(ctx.exception.polls, 3)
        self.assertEqual(ctx.exception.kind, ErrorKind.TIMEOUT)
        self.assertEqual(len(service.requests), 3)
        self.assertEqual(self.clock.sleeps, [10.0, 10.0])

    async def test_transient_poll_failures_are_tolerated(self):
        # three 503s exhaust one status call's retries; the next poll succeeds
        service = FakeService(status=[
            httpx.Response(503), httpx.Response(503), httpx.Response(503),
            status("SUCCESS"),
        ])
        client = self.make_client(service)

        job = await client.wait_for_completion("job-1")
        self.assertEqual(job.status, JobStatus.SUCCESS)
        self.assertEqual(job.polls, 2)

    async def test_auth_failure_while_polling_is_terminal(self):
        service = FakeService(status=[httpx.Response(403)])
        client = self.make_client(service)

        with self.assertRaises(DocumentServiceError) as ctx:
            await client.wait_for_completion("job-1")
        self.assertEqual(ctx.exception.kind, ErrorKind.AUTH)
        self.assertEqual(len(service.requests), 1)

    async def test_deadline_abandons_slow_job(self):
        service = FakeService(status=[status("PENDING")])
        client = self.make_client(service, poll_max_attempts=30)
        deadline = self.clock.time() + 25.0

        with self.assertRaises(JobTimeoutError) as ctx:
            await client.wait_for_completion("job-1", deadline=deadline)
        self.assertEqual(ctx.exception.polls, 3)
        self.assertLessEqual(self.clock.time(), deadline)

    def trip_status_breaker(self):
        breaker = self.registry.circuit_breaker(STATUS_SERVICE, LLAMAPARSE_BREAKER)
        for _ in range(LLAMAPARSE_BREAKER.failure_threshold):
            breaker.on_failure()
        return breaker

    async def test_open_status_circuit_uses_poll_budget(self):
        service = FakeService(status=[status("SUCCESS")])
        client = self.make_client(service, poll_max_attempts=10, poll_interval=60.0)
        self.trip_status_breaker()

        job = await client.wait_for_completion("job-1")

        # refused at 0, 60, 120, 180 and 240s; admitted once the 300s reset elapses
        self.assertEqual(job.status, JobStatus.SUCCESS)
        self.assertEqual(job.polls, 6)
        self.assertEqual(len(service.requests), 1)
        self.assertEqual(self.clock.sleeps, [60.0] * 5)

    async def test_open_status_circuit_times_out_on_budget(self):
        service = FakeService(status=[status("SUCCESS")])
        client = self.make_client(service, poll_max_attempts=3, poll_interval=60.0)
        self.trip_status_breaker()

        with self.assertRaises(JobTimeoutError) as ctx:
            await client.wait_for_completion("job-1")
        self.assertEqual(ctx.exception.polls, 3)
        self.assertEqual(len(service.requests), 0)


class JobStatusService:
    """Status scripts per job id; the last status of each script repeats."""

    def __init__(self, scripts):
        self.scripts = {job_id: list(script) for job_id, script in scripts.items()}
        self.counts = {job_id: 0 for job_id in scripts}

    def __call__(self, request):
        job_id = request.url.path.rsplit("/", 1)[-1]
        self.counts[job_id] += 1
        script = self.scripts[job_id]
        value, error = script.pop(0) if len(script) > 1 else script[0]
        return status(value, error)


class TestConcurrentWaits(ClientTestCase):

    async def test_each_job_uses_its_own_budget(self):
        service = JobStatusService({
            "job-a": [("PENDING", None), ("SUCCESS", None)],
            "job-b": [("PENDING", None)],
            "job-c": [("PENDING", None), ("ERROR", "bad scan")],
        })
        client = self.make_client(service, poll_max_attempts=3)

        job_a, job_b, job_c = await asyncio.gather(
            client.wait_for_completion("job-a"),
            client.wait_for_completion("job-b"),
            client.wait_for_completion("job-c"),
            return_exceptions=True,
        )

        self.assertEqual(job_a.status, JobStatus.SUCCESS)
        self.assertEqual(job_a.polls, 2)
        self.assertIsInstance(job_b, JobTimeoutError)
        self.assertEqual(job_b.polls, 3)
        self.assertIsInstance(job_c, JobFailedError)
        self.assertEqual(job_c.reason, "bad scan")
        self.assertEqual(service.counts, {"job-a": 2, "job-b": 3, "job-c": 2})


class TestResults(ClientTestCase):

    async def test_wrapped_markdown_is_unwrapped(self):
        service = FakeService(result=[httpx.Response(200, json={"markdown": "| a | b | c |", "job_metadata": {}})])
        client = self.make_client(service)
        self.assertEqual(await client.get_results("job-1"), "| a | b | c |")

    async def test_raw_markdown_is_returned(self):
        service = FakeService(result=[httpx.Response(200, text="# Quote\n\n<table></table>")])
        client = self.make_client(service)
        self.assertEqual(await client.get_results("job-1"), "# Quote\n\n<table></table>")

    async def test_network_error_message(self):
        request = httpx.Request("GET", BASE_URL)
        service = FakeService(result=[httpx.ConnectError("refused", request=request)])
        client = self.make_client(service)

        with self.assertRaises(DocumentServiceError) as ctx:
            await client.get_results("job-1")
        self.assertEqual(ctx.exception.kind, ErrorKind.NETWORK)
        self.assertIn("Network error", str(ctx.exception))
        self.assertIsNotNone(ctx.exception.__cause__)


class TestResultBody(unittest.TestCase):

    def test_decode_variants(self):
        test_cases = [
            ("plain markdown", RawResult("plain markdown")),
            (json.dumps({"markdown": "wrapped"}), WrappedResult("wrapped")),
            (json.dumps(json.dumps({"markdown": "twice"})), WrappedResult("twice")),
            (json.dumps({"pages": []}), RawResult(json.dumps({"pages": []}))),
            (json.dumps({"markdown": ""}), RawResult(json.dumps({"markdown": ""}))),
            ("42", RawResult("42")),
        ]
        for body, expected in test_cases:
            with self.subTest(body=body):
                self.assertEqual(decode_result_body(body), expected)

    def test_unwrap(self):
        self.assertEqual(unwrap_result(RawResult("a")), "a")
        self.assertEqual(unwrap_result(WrappedResult("b")), "b")


class TestHealth(ClientTestCase):

    async def test_healthy(self):
        client = self.make_client(FakeService())
        health = await client.check_health()
        self.assertTrue(health["healthy"])
        self.assertIsNone(health["error"])


if __name__ == "__main__":
    unittest.main()
