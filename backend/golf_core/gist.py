"""Storage of the aggregate as a single private GitHub Gist."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import AuthError, CorruptDataError, NotFoundError, RemoteError
from .models import SCHEMA_VERSION, utc_now_iso


logger = logging.getLogger(__name__)

GIST_DESCRIPTION = "Golf Competition Manager Data"
GIST_FILENAME = "golf-data.json"
LIST_PAGE_SIZE = 100


def empty_document() -> Dict[str, Any]:
    return {
        "participants": [],
        "competitions": [],
        "attendance": [],
        "settings": {"version": SCHEMA_VERSION, "createdAt": utc_now_iso()},
    }


class GistClient:
    """Whole-document read/replace against the Gist REST API.

    ``replace`` is a blind overwrite: no revision is compared, so the last
    write to reach GitHub wins.
    """

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.token: str | None = None
        self.gist_id: str | None = None
        if token:
            self.authenticate(token)

    @property
    def has_credential(self) -> bool:
        return bool(self.token)

    @property
    def document_url(self) -> Optional[str]:
        if self.gist_id:
            return f"https://gist.github.com/{self.gist_id}"
        return None

    def authenticate(self, token: str | None) -> None:
        """Store the credential. Nothing is checked until the next request."""
        self.token = (token or "").strip() or None
        self.gist_id = None

    async def locate_or_create_document(self) -> str:
        if self.gist_id:
            return self.gist_id

        page = 1
        while True:
            gists = await self._request("GET", "/gists", params={"per_page": LIST_PAGE_SIZE, "page": page})
            if not isinstance(gists, list):
                raise NotFoundError("Gist listing returned an unexpected payload")

            for gist in gists:
                if not isinstance(gist, dict):
                    continue
                if gist.get("description") == GIST_DESCRIPTION and gist.get("public") is False:
                    self.gist_id = str(gist["id"])
                    logger.debug("Using existing gist %s (listing page %d)", self.gist_id, page)
                    return self.gist_id

            # A short page is the last one.
            if len(gists) < LIST_PAGE_SIZE:
                break
            page += 1

        payload = {
            "description": GIST_DESCRIPTION,
            "public": False,
            "files": {GIST_FILENAME: {"content": json.dumps(empty_document(), indent=2)}},
        }
        created = await self._request("POST", "/gists", json=payload)
        if not isinstance(created, dict) or not created.get("id"):
            raise RemoteError("Gist creation returned no id")
        self.gist_id = str(created["id"])
        logger.info("Created gist %s for competition data", self.gist_id)
        return self.gist_id

    async def read(self) -> Dict[str, Any]:
        gist_id = await self.locate_or_create_document()
        gist = await self._request("GET", f"/gists/{gist_id}")

        files = gist.get("files") if isinstance(gist, dict) else None
        entry = files.get(GIST_FILENAME) if isinstance(files, dict) else None
        if not isinstance(entry, dict):
            raise CorruptDataError(f"{GIST_FILENAME} not found in gist {gist_id}")

        content = entry.get("content")
        try:
            data = json.loads(content or "")
        except (TypeError, ValueError) as exc:
            raise CorruptDataError(f"{GIST_FILENAME} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise CorruptDataError(f"{GIST_FILENAME} does not hold a JSON object")
        return data

    async def replace(self, document: Dict[str, Any]) -> None:
        gist_id = await self.locate_or_create_document()
        payload = {"files": {GIST_FILENAME: {"content": json.dumps(document, indent=2, ensure_ascii=False)}}}
        await self._request("PATCH", f"/gists/{gist_id}", json=payload)

    async def validate_credential(self) -> bool:
        try:
            await self._request("GET", "/user")
        except Exception as exc:
            logger.info("GitHub credential check failed: %s", exc)
            return False
        return True

    # ---- internal helpers ------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        if not self.token:
            raise AuthError("GitHub token is not set")

        url = f"{self.api_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, params=params, json=json, headers=self._headers())
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise self._status_error(exc.response, path) from exc
        except httpx.HTTPError as exc:
            raise RemoteError(f"GitHub API request failed: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(f"GitHub API returned a non-JSON body for {method} {path}") from exc

    def _status_error(self, response: httpx.Response, path: str) -> Exception:
        status_code = response.status_code
        detail = _extract_detail(response) or response.reason_phrase or f"HTTP {status_code}"
        message = f"GitHub API Error: {detail}"
        if status_code == 401:
            return AuthError(message)
        if status_code == 404 and path.startswith("/gists/"):
            # Cached id went stale; resolve again next time.
            self.gist_id = None
            return NotFoundError(message)
        return RemoteError(message, status_code=status_code)


def _extract_detail(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        text = (response.text or "").strip()
        return text or None

    candidates: List[Any] = []
    if isinstance(payload, dict):
        candidates.append(payload)
    elif isinstance(payload, list) and payload:
        candidates.append(payload[0])
    for item in candidates:
        if not isinstance(item, dict):
            continue
        for key in ("message", "detail", "error"):
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None
