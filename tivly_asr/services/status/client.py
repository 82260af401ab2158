"""
Asynchronous HTTP client for the job-status endpoint.

Uses ``httpx.AsyncClient`` so a polling loop can share the event loop with
the stream and realtime transports.
"""

import logging

import httpx

from tivly_asr.core.auth import TokenStore
from tivly_asr.core.config import Settings, get_settings
from tivly_asr.core.exceptions import AuthTokenMissingError, StatusRequestError
from tivly_asr.core.models import ASRStatus, JobStatus
from tivly_asr.core.utils import parse_json_object
from tivly_asr.services.status.normalize import normalize_status_payload

logger = logging.getLogger(__name__)


class ASRStatusClient:
    """Thin async wrapper around ``GET /asr/status``.

    Every failure is raised as ``StatusRequestError`` with a category so the
    poller can log it and keep going. The bearer token is looked up on each
    request.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token_store: TokenStore | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the HTTP client.

        Args:
            base_url: Backend base URL (falls back to settings).
            token_store: Source of the bearer token.
            timeout: Per-request timeout in seconds.
            settings: Optional Settings instance (defaults to get_settings()).
            transport: Custom httpx transport (tests use ``httpx.MockTransport``).
        """
        self._settings = settings or get_settings()
        self._base_url = (base_url or self._settings.api_base_url).rstrip("/")
        self._token_store = token_store or TokenStore(self._settings)
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout or self._settings.http_timeout_seconds,
            transport=transport,
        )

    async def _get(self, path: str, **kwargs) -> httpx.Response:
        """Execute a GET request, translating httpx errors.

        Raises:
            AuthTokenMissingError: When no token is stored.
            StatusRequestError: On connection, timeout, or network errors.
        """
        token = self._token_store.get_token()
        if not token:
            raise AuthTokenMissingError()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        try:
            return await self._client.get(path, headers=headers, **kwargs)
        except httpx.ConnectError as exc:
            raise StatusRequestError(
                f"Could not connect to {self._base_url}: {exc}", category="connection"
            ) from exc
        except httpx.TimeoutException as exc:
            raise StatusRequestError("Status request timed out", category="timeout") from exc
        except httpx.HTTPError as exc:
            raise StatusRequestError(f"Network error: {exc}", category="network") from exc

    async def get_status(self, job_id: str) -> ASRStatus:
        """Fetch and normalize the status of one transcription job.

        A 404 means the job is not registered yet and is reported as queued;
        a 202 means it was accepted and is still processing.

        Raises:
            AuthTokenMissingError: When no token is stored.
            StatusRequestError: On transport errors, other non-2xx responses,
                or an undecodable body.
        """
        resp = await self._get("/asr/status", params={"meetingId": job_id})

        if resp.status_code == 404:
            logger.debug("ASR status 404 for %s: job not registered yet", job_id)
            return ASRStatus(status=JobStatus.queued, progress=0)

        if resp.status_code == 202:
            data = parse_json_object(resp.content) or {}
            return normalize_status_payload(
                {
                    "status": data.get("status") or JobStatus.processing,
                    "progress": data.get("progress") or 0,
                }
            )

        if resp.is_error:
            detail = resp.text or resp.reason_phrase
            raise StatusRequestError(
                f"Status check returned {resp.status_code}: {detail}", category="http"
            )

        data = parse_json_object(resp.content)
        if data is None:
            raise StatusRequestError("Status response was not a JSON object", category="decode")

        status = normalize_status_payload(data)
        logger.debug(
            "ASR status for %s: %s stage=%s progress=%s",
            job_id,
            status.status,
            status.stage,
            status.progress,
        )
        return status

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ASRStatusClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
