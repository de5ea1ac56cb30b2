from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from jobstream.api.client import IDEMPOTENCY_HEADER, ProcessorApiClient
from jobstream.jobs.service import CancellationError, SubmissionError
from tests.fakes import CountingCredentials


def make_client(handler, credentials=None) -> ProcessorApiClient:  # type: ignore[no-untyped-def]
    return ProcessorApiClient(
        "http://processor.test/",
        credentials or CountingCredentials(),
        transport=httpx.MockTransport(handler),
    )


def run_with_client(client: ProcessorApiClient, coro_factory):  # type: ignore[no-untyped-def]
    async def scenario():  # type: ignore[no-untyped-def]
        async with client:
            return await coro_factory(client)

    return asyncio.run(scenario())


def test_submit_sends_input_key_and_bearer_token() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"isSuccess": True, "value": "job-42"})

    client = make_client(handler)
    job_id = run_with_client(client, lambda c: c.submit_job("hello", "key-1"))

    assert job_id == "job-42"
    request = requests[0]
    assert request.method == "POST"
    assert request.url == "http://processor.test/api/processor/process-string"
    assert request.headers[IDEMPOTENCY_HEADER] == "key-1"
    assert request.headers["Authorization"] == "Bearer token-1"
    assert json.loads(request.content) == {"input": "hello"}


def test_numeric_job_id_is_returned_as_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"isSuccess": True, "value": 17})

    assert run_with_client(make_client(handler), lambda c: c.submit_job("hello", "key-1")) == "17"


def test_unsuccessful_envelope_raises_submission_error_with_description() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"isSuccess": False, "error": {"code": "Busy", "description": "Queue is full"}})

    with pytest.raises(SubmissionError, match="Queue is full"):
        run_with_client(make_client(handler), lambda c: c.submit_job("hello", "key-1"))


def test_http_error_raises_submission_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(SubmissionError, match="HTTP 500"):
        run_with_client(make_client(handler), lambda c: c.submit_job("hello", "key-1"))


def test_network_failure_raises_submission_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SubmissionError):
        run_with_client(make_client(handler), lambda c: c.submit_job("hello", "key-1"))


def test_missing_job_id_raises_submission_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"isSuccess": True, "value": None})

    with pytest.raises(SubmissionError):
        run_with_client(make_client(handler), lambda c: c.submit_job("hello", "key-1"))


def test_blank_input_never_reaches_the_server() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"isSuccess": True, "value": "job-1"})

    with pytest.raises(SubmissionError):
        run_with_client(make_client(handler), lambda c: c.submit_job("  ", "key-1"))
    assert requests == []


def test_cancel_posts_job_id_and_accepts_empty_body() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    run_with_client(make_client(handler), lambda c: c.cancel_job("job-42"))
    assert requests[0].url == "http://processor.test/api/processor/cancel-job"
    assert json.loads(requests[0].content) == {"jobId": "job-42"}


def test_cancel_rejections_raise_cancellation_error() -> None:
    def rejected(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"isSuccess": False, "error": "Job not found"})

    def unsuccessful(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"isSuccess": False})

    with pytest.raises(CancellationError, match="Job not found"):
        run_with_client(make_client(rejected), lambda c: c.cancel_job("job-42"))
    with pytest.raises(CancellationError):
        run_with_client(make_client(unsuccessful), lambda c: c.cancel_job("job-42"))


def test_credential_is_read_for_every_request() -> None:
    tokens: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        tokens.append(request.headers["Authorization"])
        return httpx.Response(200, json={"isSuccess": True, "value": "job-1"})

    async def calls(client: ProcessorApiClient) -> None:
        await client.submit_job("one", "key-1")
        await client.cancel_job("job-1")

    run_with_client(make_client(handler), calls)
    assert tokens == ["Bearer token-1", "Bearer token-2"]
