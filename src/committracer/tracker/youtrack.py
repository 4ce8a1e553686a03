"""YouTrack issue classifier implementation."""

from typing import List, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from committracer.exceptions import (
    IssueNotFoundError,
    TrackerAuthError,
    TrackerTransientError,
)
from committracer.models import IssueDetails
from committracer.tracker.base import BaseIssueClassifier

logger = structlog.get_logger(__name__)

ISSUE_FIELDS = "idReadable,summary,tags(name)"


class _TagResponse(BaseModel):
    name: str


class _IssueResponse(BaseModel):
    """Subset of the YouTrack issue entity requested via ``fields``."""

    model_config = ConfigDict(extra="ignore")

    id_readable: str = Field(..., alias="idReadable")
    summary: Optional[str] = None
    tags: List[_TagResponse] = Field(default_factory=list)

    def to_details(self) -> IssueDetails:
        return IssueDetails(
            id=self.id_readable,
            summary=self.summary or "",
            tags=[tag.name for tag in self.tags],
        )


class YouTrackClient(BaseIssueClassifier):
    """Fetches issue summaries and tags from the YouTrack REST API."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the YouTrack client.

        Args:
            base_url: YouTrack instance URL, e.g. https://youtrack.jetbrains.com
            token: Permanent token sent as a Bearer credential
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client.

        Lazy initialization - client is created on first access.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/api",
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
                follow_redirects=True,
                headers={
                    "Accept": "application/json",
                    "User-Agent": "committracer",
                },
                transport=self._transport,
            )
        return self._client

    async def update_credentials(
        self, base_url: Optional[str] = None, token: Optional[str] = None
    ) -> None:
        """Rotate the tracker URL and/or token.

        Cached classifications stay valid: they describe ticket content, not
        the credentials used to fetch it.
        """
        if base_url is not None:
            self.base_url = base_url.rstrip("/")
        if token is not None:
            self.token = token
        await self.close()
        logger.info("tracker_credentials_updated", base_url=self.base_url)

    async def fetch(self, ticket_id: str) -> IssueDetails:
        """Fetch summary and tags of an issue."""
        response = await self._get(
            f"/issues/{ticket_id}", params={"fields": ISSUE_FIELDS}, ticket_id=ticket_id
        )

        if response.status_code == httpx.codes.NOT_FOUND:
            logger.info("issue_not_found", ticket=ticket_id)
            raise IssueNotFoundError(f"Issue {ticket_id} not found", ticket_id)
        if response.status_code != httpx.codes.OK:
            logger.warning("issue_fetch_failed", ticket=ticket_id, status=response.status_code)
            raise TrackerTransientError(
                f"Unexpected response {response.status_code} for {ticket_id}", ticket_id
            )

        try:
            return _IssueResponse.model_validate_json(response.content).to_details()
        except ValidationError as e:
            logger.warning("issue_response_invalid", ticket=ticket_id, error=str(e))
            raise TrackerTransientError(f"Malformed response for {ticket_id}", ticket_id) from e

    async def validate_token(self) -> bool:
        """Check whether the configured token is accepted by the tracker.

        Returns:
            True if the token is valid

        Raises:
            TrackerTransientError: If the tracker cannot be reached
        """
        try:
            response = await self._get("/users/me", params={"fields": "id,name"})
        except TrackerAuthError:
            return False
        return response.status_code == httpx.codes.OK

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, params: dict, ticket_id: str = "") -> httpx.Response:
        """Issue an authorized GET request.

        Raises:
            TrackerAuthError: If no token is configured or it is rejected
            TrackerTransientError: On timeouts and transport failures
        """
        if not self.token:
            raise TrackerAuthError("No YouTrack API token configured", ticket_id)

        try:
            response = await self.client.get(
                path,
                params=params,
                headers={"Authorization": f"Bearer {self.token}"},
            )
        except httpx.TimeoutException as e:
            logger.warning("tracker_timeout", path=path, timeout=self.timeout)
            raise TrackerTransientError(f"Timed out requesting {path}", ticket_id) from e
        except httpx.TransportError as e:
            logger.warning("tracker_connection_error", path=path, error=str(e))
            raise TrackerTransientError(f"Connection error requesting {path}: {e}", ticket_id) from e

        if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
            logger.warning("tracker_auth_failed", status=response.status_code)
            raise TrackerAuthError(
                f"YouTrack rejected the token (HTTP {response.status_code})", ticket_id
            )
        return response

    async def __aenter__(self) -> "YouTrackClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
