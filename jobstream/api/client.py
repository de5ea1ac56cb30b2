from __future__ import annotations

import logging
from typing import Any, Generator

import httpx
from pydantic import ValidationError

from jobstream.api.schemas.jobs import ApiResult, CancelJobRequest, ProcessStringRequest, describe_error
from jobstream.core.config import Settings
from jobstream.core.credentials import CredentialProvider
from jobstream.jobs.service import CancellationError, SubmissionError

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"

SUBMIT_FAILED_MESSAGE = "An error occurred while processing the string"
CANCEL_FAILED_MESSAGE = "An error occurred while cancelling the job"


class BearerCredentialAuth(httpx.Auth):
    """Attaches the current credential to every outgoing request."""

    def __init__(self, credential_provider: CredentialProvider):
        self._credential_provider = credential_provider

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self._credential_provider()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        yield request


class ProcessorApiClient:
    """Submit and cancel calls against the string processor API.

    Connection failures are retried by the transport with the very same
    request, so a retried submission carries the same idempotency key.
    """

    def __init__(
        self,
        base_url: str,
        credential_provider: CredentialProvider,
        *,
        submit_path: str = "/api/processor/process-string",
        cancel_path: str = "/api/processor/cancel-job",
        timeout: float = 30.0,
        retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._credential_provider = credential_provider
        self._submit_path = submit_path
        self._cancel_path = cancel_path
        self._timeout = timeout
        self._retries = retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings, credential_provider: CredentialProvider) -> "ProcessorApiClient":
        return cls(
            settings.api_base_url,
            credential_provider,
            submit_path=settings.submit_path,
            cancel_path=settings.cancel_path,
            timeout=settings.request_timeout_seconds,
            retries=settings.request_retries,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                auth=BearerCredentialAuth(self._credential_provider),
                transport=self._transport or httpx.AsyncHTTPTransport(retries=self._retries),
            )
        return self._client

    async def submit_job(self, input_text: str, idempotency_key: str) -> str:
        try:
            payload = ProcessStringRequest(input=input_text).model_dump()
        except ValidationError as exc:
            raise SubmissionError("Input string cannot be empty or white space") from exc

        try:
            response = await self.client.post(
                self._submit_path,
                json=payload,
                headers={IDEMPOTENCY_HEADER: idempotency_key},
            )
        except httpx.HTTPError as exc:
            logger.warning("Submit request failed: %s", exc)
            raise SubmissionError(SUBMIT_FAILED_MESSAGE) from exc

        result = self._parse_result(response, SubmissionError, SUBMIT_FAILED_MESSAGE, require_envelope=True)
        if result is None or result.value is None or str(result.value).strip() == "":
            raise SubmissionError("Submission response did not include a job id")
        return str(result.value)

    async def cancel_job(self, job_id: str) -> None:
        payload = CancelJobRequest(job_id=job_id).model_dump(by_alias=True)
        try:
            response = await self.client.post(self._cancel_path, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Cancel request for job %s failed: %s", job_id, exc)
            raise CancellationError(CANCEL_FAILED_MESSAGE) from exc
        self._parse_result(response, CancellationError, CANCEL_FAILED_MESSAGE, require_envelope=False)

    def _parse_result(
        self,
        response: httpx.Response,
        error_cls: type[RuntimeError],
        fallback: str,
        *,
        require_envelope: bool,
    ) -> ApiResult | None:
        body: Any = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = None

        if response.is_error:
            detail = describe_error(body.get("error") if isinstance(body, dict) else None)
            raise error_cls(detail or f"{fallback} (HTTP {response.status_code})")

        if not isinstance(body, dict) or "isSuccess" not in body:
            if require_envelope:
                raise error_cls(f"{fallback}: unexpected response body")
            return None

        try:
            result = ApiResult.model_validate(body)
        except ValidationError as exc:
            raise error_cls(f"{fallback}: malformed response") from exc
        if not result.is_success:
            raise error_cls(result.error_message(fallback))
        return result

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ProcessorApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        await self.aclose()
