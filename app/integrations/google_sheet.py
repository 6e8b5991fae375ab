"""Google Sheet access: CSV export source and Sheets API write-back."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import httpx
import jwt

from app.config import settings
from app.core.exceptions import DocumentFetchError, SheetWriteError

logger = logging.getLogger(__name__)


def to_csv_url(sheet_url: str) -> str:
    """Turn an edit, pubhtml or plain published link into its CSV export URL."""
    url = sheet_url.strip()
    if "/edit" in url:
        base = url.split("/edit", 1)[0]
        return f"{base}/export?format=csv"
    if "/pubhtml" in url:
        base, _, query = url.partition("?")
        pub_base = base.replace("/pubhtml", "/pub")
        return f"{pub_base}?output=csv&{query}" if query else f"{pub_base}?output=csv"
    if "output=csv" in url or url.endswith(".csv"):
        return url
    return f"{url}&output=csv" if "?" in url else f"{url}?output=csv"


class DocumentSource(Protocol):
    """Anything able to hand back the raw sheet text."""

    async def fetch(self) -> str:
        ...


class HttpSheetSource:
    """Downloads the sheet export over HTTP; no retry, httpx default timeout."""

    def __init__(self, sheet_url: str, client: Optional[httpx.AsyncClient] = None):
        self.url = to_csv_url(sheet_url)
        self._client = client

    async def _get(self, client: httpx.AsyncClient) -> str:
        response = await client.get(self.url, follow_redirects=True)
        if response.status_code >= 400:
            raise DocumentFetchError(
                f"Error fetching task sheet: {response.status_code} {response.reason_phrase}"
            )
        return response.text

    async def fetch(self) -> str:
        try:
            if self._client is not None:
                return await self._get(self._client)
            async with httpx.AsyncClient() as client:
                return await self._get(client)
        except httpx.HTTPError as exc:
            logger.warning("Task sheet fetch failed for %s: %s", self.url, exc)
            raise DocumentFetchError(f"Error fetching task sheet: {exc}") from exc


class StaticDocumentSource:
    """Source wrapping an already available document body (uploads, tests)."""

    def __init__(self, content: str):
        self.content = content

    async def fetch(self) -> str:
        return self.content


GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
TOKEN_LIFETIME_SECONDS = 3600


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def build_row_values(task) -> List[str]:
    """Sheet row A:Q for a task; the task id in column A is the lookup key."""
    return [
        _cell(task.id),
        _cell(task.week_year),
        _cell(task.risk_type),
        _cell(task.description),
        _cell(task.assignee_name),
        _cell(task.assignee_email),
        _cell(task.date),
        _cell(task.end_date),
        _cell(task.location),
        _cell(task.contractor),
        "",
        "",
        "",
        "",
        "",
        "",
        _cell(task.description),
    ]


class GoogleSheetWriter:
    """Mirrors manual task changes into the task sheet through the Sheets API.

    Authenticates as a Google service account: a signed RS256 assertion is
    exchanged for an access token, which is reused until shortly before expiry.
    """

    def __init__(
        self,
        sheet_id: str,
        *,
        sheet_range: str = "PLS!A:Q",
        service_account_json: Optional[str] = None,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.sheet_id = sheet_id
        self.sheet_name = sheet_range.split("!", 1)[0] or "PLS"
        self._service_account_json = service_account_json
        self._access_token = access_token
        self._token_expires_at = None if access_token is None else float("inf")
        self._client = client

    @classmethod
    def from_settings(cls) -> Optional["GoogleSheetWriter"]:
        """Writer built from settings, or None when write-back is not configured."""
        if not settings.PAM_SHEET_ID or not settings.GOOGLE_SERVICE_ACCOUNT_JSON:
            return None
        return cls(
            settings.PAM_SHEET_ID,
            sheet_range=settings.PAM_SHEET_RANGE,
            service_account_json=settings.GOOGLE_SERVICE_ACCOUNT_JSON,
        )

    def _values_url(self, cell_range: str) -> str:
        return f"{SHEETS_API_URL}/{self.sheet_id}/values/{quote(cell_range, safe='')}"

    def _assertion(self) -> str:
        if not self._service_account_json:
            raise SheetWriteError("GOOGLE_SERVICE_ACCOUNT_JSON is not configured")
        try:
            credentials = json.loads(self._service_account_json)
        except ValueError as exc:
            raise SheetWriteError("Invalid service account credentials") from exc
        client_email = credentials.get("client_email")
        private_key = credentials.get("private_key")
        if not client_email or not private_key:
            raise SheetWriteError("Invalid service account credentials: client_email or private_key missing")

        now = int(time.time())
        claims = {
            "iss": client_email,
            "scope": SHEETS_SCOPE,
            "aud": GOOGLE_TOKEN_URL,
            "iat": now,
            "exp": now + TOKEN_LIFETIME_SECONDS,
        }
        try:
            return jwt.encode(claims, private_key, algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise SheetWriteError(f"Could not sign service account assertion: {exc}") from exc

    async def _token(self, client: httpx.AsyncClient) -> str:
        if self._access_token is not None and time.monotonic() < self._token_expires_at:
            return self._access_token

        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": self._assertion(),
            },
        )
        if response.status_code >= 400:
            raise SheetWriteError(f"Error obtaining Google token: {response.status_code} {response.text}")
        try:
            payload = response.json()
            self._access_token = payload["access_token"]
        except (ValueError, KeyError) as exc:
            raise SheetWriteError("Google token response has no access_token") from exc
        # Treated as expired one minute before Google says so.
        self._token_expires_at = time.monotonic() + int(payload.get("expires_in", TOKEN_LIFETIME_SECONDS)) - 60
        return self._access_token

    async def _call(self, client: httpx.AsyncClient, method: str, url: str, what: str, **kwargs) -> httpx.Response:
        token = await self._token(client)
        response = await client.request(method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs)
        if response.status_code >= 400:
            raise SheetWriteError(f"Error {what} in sheet: {response.status_code} {response.text}")
        return response

    async def _run(self, operation) -> None:
        try:
            if self._client is not None:
                await operation(self._client)
                return
            async with httpx.AsyncClient() as client:
                await operation(client)
        except httpx.HTTPError as exc:
            logger.warning("Sheets API request failed: %s", exc)
            raise SheetWriteError(f"Sheets API request failed: {exc}") from exc

    async def _find_row(self, client: httpx.AsyncClient, task_id) -> int:
        """1-based row number holding task_id in column A."""
        response = await self._call(
            client,
            "GET",
            self._values_url(f"{self.sheet_name}!A:A"),
            "reading rows",
            params={"majorDimension": "ROWS"},
        )
        wanted = str(task_id)
        for index, row in enumerate(response.json().get("values", []), start=1):
            if row and str(row[0]).strip() == wanted:
                return index
        raise SheetWriteError(f"Task {task_id} not found in sheet")

    async def _sheet_gid(self, client: httpx.AsyncClient) -> Optional[int]:
        response = await self._call(
            client,
            "GET",
            f"{SHEETS_API_URL}/{self.sheet_id}",
            "reading sheet properties",
            params={"fields": "sheets.properties"},
        )
        for sheet in response.json().get("sheets", []):
            properties = sheet.get("properties", {})
            if properties.get("title") == self.sheet_name:
                return properties.get("sheetId")
        return None

    async def append_task(self, task) -> None:
        async def operation(client):
            await self._call(
                client,
                "POST",
                self._values_url(f"{self.sheet_name}!A:Q") + ":append",
                "appending row",
                params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
                json={"values": [build_row_values(task)]},
            )

        await self._run(operation)

    async def update_task(self, task) -> None:
        async def operation(client):
            row = await self._find_row(client, task.id)
            await self._call(
                client,
                "PUT",
                self._values_url(f"{self.sheet_name}!A{row}:Q{row}"),
                "updating row",
                params={"valueInputOption": "USER_ENTERED"},
                json={"values": [build_row_values(task)]},
            )

        await self._run(operation)

    async def delete_task(self, task_id) -> None:
        async def operation(client):
            row = await self._find_row(client, task_id)
            gid = await self._sheet_gid(client)
            if gid is None:
                # Without the numeric sheet id the row can only be blanked.
                await self._call(
                    client,
                    "POST",
                    self._values_url(f"{self.sheet_name}!A{row}:Q{row}") + ":clear",
                    "clearing row",
                )
                return
            if row <= 1:
                raise SheetWriteError("The sheet header row cannot be deleted")
            request: Dict[str, Any] = {
                "deleteDimension": {
                    "range": {"sheetId": gid, "dimension": "ROWS", "startIndex": row - 1, "endIndex": row}
                }
            }
            await self._call(
                client,
                "POST",
                f"{SHEETS_API_URL}/{self.sheet_id}:batchUpdate",
                "deleting row",
                json={"requests": [request]},
            )

        await self._run(operation)
