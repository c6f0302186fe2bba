# attendance_engine/services/zoom_client.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from attendance_engine.core.config import get_settings
from attendance_engine.schemas.attendance import MeetingDetails
from attendance_engine.schemas.participant import RawParticipantEvent
from attendance_engine.services.interfaces import MeetingProviderError

logger = logging.getLogger(__name__)


class ZoomClientError(MeetingProviderError):
    """
    Raised when the ZoomClient cannot obtain an access token, when a Zoom
    API call fails, or when a call times out.
    """


@dataclass
class _TokenState:
    access_token: str
    expires_at: datetime


def encode_meeting_uuid(meeting_uuid: str) -> str:
    """
    Zoom requires UUIDs that begin with "/" or contain "//" to be
    double-URL-encoded when used in a path.
    """
    encoded = quote(meeting_uuid, safe="")
    if meeting_uuid.startswith("/") or "//" in meeting_uuid:
        encoded = quote(encoded, safe="")
    return encoded


class ZoomClient:
    """
    Minimal Zoom REST client using the server-to-server OAuth flow.

    Responsibilities
    ----------------
    - Fetch and cache an access token (account_credentials grant).
    - Report the actual bounds of a finished meeting.
    - Return raw participant join/leave rows for a finished meeting,
      following pagination.

    Notes
    -----
    - Token caching is in-memory for this process only.
    - Every HTTP failure or timeout surfaces as ZoomClientError so callers
      can fail the run cleanly instead of proceeding with partial data.
    """

    PAGE_SIZE = 300

    def __init__(
        self,
        account_id: str,
        client_id: str,
        client_secret: str,
        base_url: str = "https://api.zoom.us/v2",
        oauth_url: str = "https://zoom.us/oauth/token",
        timeout_seconds: float = 10.0,
    ) -> None:
        if not account_id or not client_id or not client_secret:
            raise ValueError("account_id, client_id and client_secret are required")

        self._account_id = account_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._base_url = base_url.rstrip("/")
        self._oauth_url = oauth_url
        self._timeout_seconds = timeout_seconds

        self._token_state: Optional[_TokenState] = None

    async def _fetch_token(self) -> _TokenState:
        params = {"grant_type": "account_credentials", "account_id": self._account_id}

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                resp = await client.post(
                    self._oauth_url,
                    params=params,
                    auth=(self._client_id, self._client_secret),
                )
        except httpx.TimeoutException as exc:
            raise ZoomClientError(f"Timed out obtaining Zoom token: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ZoomClientError(f"Failed to reach Zoom token endpoint: {exc}") from exc

        if resp.status_code != 200:
            raise ZoomClientError(
                f"Failed to obtain Zoom token (status={resp.status_code}): {resp.text}"
            )

        payload = resp.json()
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")

        if not access_token or not isinstance(expires_in, (int, float)):
            raise ZoomClientError(
                "Invalid token response from Zoom (missing access_token/expires_in)"
            )

        # Refresh slightly before real expiry.
        now = datetime.now(tz=timezone.utc)
        safety_margin = 60  # seconds
        expires_at = now + timedelta(seconds=float(expires_in) - safety_margin)

        return _TokenState(access_token=access_token, expires_at=expires_at)

    async def get_access_token(self) -> str:
        """
        Return a valid access token, using a cached value if still valid.
        """
        now = datetime.now(tz=timezone.utc)
        if self._token_state and self._token_state.expires_at > now:
            return self._token_state.access_token

        self._token_state = await self._fetch_token()
        return self._token_state.access_token

    async def get_json(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Issue an authenticated GET and return the JSON payload.

        Raises ZoomClientError on non-2xx responses, transport errors and timeouts.
        """
        token = await self.get_access_token()

        if path.startswith("http://") or path.startswith("https://"):
            url = path
        else:
            url = f"{self._base_url}/{path.lstrip('/')}"

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                resp = await client.request(
                    method="GET",
                    url=url,
                    headers=headers,
                    params=params,
                )
        except httpx.TimeoutException as exc:
            raise ZoomClientError(f"Zoom GET timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise ZoomClientError(f"Zoom GET failed: {exc}") from exc

        if resp.status_code // 100 != 2:
            raise ZoomClientError(
                f"Zoom GET failed (status={resp.status_code}): {resp.text}"
            )
        return resp.json()

    async def get_meeting_details(self, meeting_uuid: str) -> MeetingDetails:
        """
        Actual start and end of a finished meeting.
        """
        payload = await self.get_json(f"/past_meetings/{encode_meeting_uuid(meeting_uuid)}")
        return MeetingDetails(
            meeting_uuid=meeting_uuid,
            start_time=self._parse_iso_utc(payload.get("start_time")),
            end_time=self._parse_iso_utc(payload.get("end_time")),
        )

    async def get_meeting_actual_duration(self, meeting_uuid: str) -> Optional[int]:
        """
        Rounded minutes between the actual start and end, or None if Zoom
        does not report both.
        """
        details = await self.get_meeting_details(meeting_uuid)
        return details.duration_minutes

    async def get_participant_events(self, meeting_uuid: str) -> List[RawParticipantEvent]:
        """
        All participant join/leave rows of a finished meeting.

        Rows without a parseable join time are skipped and logged.
        """
        path = f"/report/meetings/{encode_meeting_uuid(meeting_uuid)}/participants"
        events: List[RawParticipantEvent] = []
        next_page_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"page_size": self.PAGE_SIZE}
            if next_page_token:
                params["next_page_token"] = next_page_token

            payload = await self.get_json(path, params=params)

            for row in payload.get("participants", []):
                event = self._parse_participant(row)
                if event is not None:
                    events.append(event)

            next_page_token = payload.get("next_page_token")
            if not next_page_token:
                break

        return events

    def _parse_participant(self, row: Dict[str, Any]) -> Optional[RawParticipantEvent]:
        join_time = self._parse_iso_utc(row.get("join_time"))
        if join_time is None:
            logger.warning(
                "Skipping Zoom participant row without a valid join_time: %s",
                row.get("user_email") or row.get("name"),
            )
            return None

        participant_id = row.get("id") or row.get("user_id")
        return RawParticipantEvent(
            email=row.get("user_email") or None,
            display_name=row.get("name") or "",
            participant_id=str(participant_id) if participant_id else None,
            join_time=join_time,
            leave_time=self._parse_iso_utc(row.get("leave_time")),
        )

    def _parse_iso_utc(self, value: Optional[str]) -> Optional[datetime]:
        """
        Parse an ISO-8601 datetime string and normalize to UTC.

        Returns None if missing or if parsing fails.
        """
        if not value:
            return None
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)


# Simple singleton-style accessor wired to app settings
_zoom_client_instance: Optional[ZoomClient] = None


def get_zoom_client() -> ZoomClient:
    """
    Lazily construct a ZoomClient instance using application settings.
    """
    global _zoom_client_instance
    if _zoom_client_instance is None:
        settings = get_settings()
        if not settings.ZOOM_ACCOUNT_ID or not settings.ZOOM_CLIENT_ID or not settings.ZOOM_CLIENT_SECRET:
            raise ZoomClientError(
                "ZOOM_ACCOUNT_ID, ZOOM_CLIENT_ID and ZOOM_CLIENT_SECRET must be "
                "configured in settings to use the shared Zoom client."
            )
        _zoom_client_instance = ZoomClient(
            account_id=settings.ZOOM_ACCOUNT_ID,
            client_id=settings.ZOOM_CLIENT_ID,
            client_secret=settings.ZOOM_CLIENT_SECRET,
            base_url=str(settings.ZOOM_BASE_URL or "https://api.zoom.us/v2"),
            oauth_url=settings.ZOOM_OAUTH_URL,
            timeout_seconds=settings.ZOOM_TIMEOUT_SECONDS,
        )
    return _zoom_client_instance
