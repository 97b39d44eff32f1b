import asyncio
import logging
import time
from typing import Any, Optional, Sequence

import requests

from rndc_bridge.domain.models import (
    Batch,
    BatchEnvelope,
    BatchSubmitRequest,
    BatchSubmitResponse,
    SubmissionRecord,
    SubmissionsEnvelope,
)
from rndc_bridge.exceptions import ConnectionFailure, EmptyBatchError

logger = logging.getLogger(__name__)


class BatchApiClient:
    """
    HTTP client for the batch endpoints.
    Network failures and non-2xx answers surface as ConnectionFailure.
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.session = session or requests.Session()
        if api_token:
            self.session.headers["Authorization"] = f"Bearer {api_token}"

    def submit(self, records: Sequence[SubmissionRecord], ws_url: Optional[str] = None) -> str:
        if not records:
            raise EmptyBatchError("No hay registros para enviar")
        payload = BatchSubmitRequest(submissions=list(records), ws_url=ws_url).model_dump(
            mode="json", by_alias=True, exclude_none=True
        )
        # Creating a batch is not idempotent, so no retries here.
        data = self._request("POST", "/batches", json=payload, retry=False)
        result = BatchSubmitResponse.model_validate(data)
        if not result.success or not result.batch_id:
            raise ConnectionFailure(result.message or "Batch was not accepted")
        return result.batch_id

    def get_batch(self, batch_id: str) -> Batch:
        return BatchEnvelope.model_validate(self._request("GET", f"/batches/{batch_id}")).batch

    def list_submissions(self, batch_id: str) -> list[SubmissionRecord]:
        data = self._request("GET", "/submissions", params={"batchId": batch_id})
        return SubmissionsEnvelope.model_validate(data).submissions

    def _request(self, method: str, path: str, retry: bool = True, **kwargs: Any) -> dict:
        url = f"{self.base_url}{path}"
        attempts = self.max_retries if retry else 1
        last_error: Optional[ConnectionFailure] = None
        for attempt in range(attempts):
            try:
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as exc:
                last_error = ConnectionFailure(f"Error de conexión: {exc}")
                if attempt < attempts - 1:
                    time.sleep(self.backoff_seconds * (2**attempt))
                    continue
                break

            if resp.status_code in {502, 503, 504} and attempt < attempts - 1:
                time.sleep(self.backoff_seconds * (2**attempt))
                continue
            if not resp.ok:
                raise ConnectionFailure(_error_detail(resp), status_code=resp.status_code)
            try:
                return resp.json()
            except ValueError as exc:
                raise ConnectionFailure(f"Invalid JSON from {url}", status_code=resp.status_code) from exc

        logger.warning("batch API unreachable", extra={"url": url, "error": str(last_error)})
        raise last_error or ConnectionFailure(f"Batch API unreachable at {url}")


def _error_detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or f"HTTP {resp.status_code}")
    return f"HTTP {resp.status_code}"


class ApiBatchSource:
    """Async view of BatchApiClient for the poller; blocking calls run in a worker thread."""

    def __init__(self, client: BatchApiClient):
        self.client = client

    async def fetch(self, batch_id: str) -> tuple[Batch, list[SubmissionRecord]]:
        batch = await asyncio.to_thread(self.client.get_batch, batch_id)
        submissions = await asyncio.to_thread(self.client.list_submissions, batch_id)
        return batch, submissions

    async def submit(self, records: Sequence[SubmissionRecord], ws_url: Optional[str] = None) -> str:
        return await asyncio.to_thread(self.client.submit, records, ws_url)
