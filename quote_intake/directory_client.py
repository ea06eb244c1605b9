import logging
from typing import Any, Dict, List, Optional

import certifi
import requests

from . import config
from .errors import DirectoryError
from .models import Client

logger = logging.getLogger(__name__)


class DirectoryClient:
    """HTTP client for the external customer directory.

    "Not found" is ``None`` (or an empty page); network failures and
    unexpected statuses raise ``DirectoryError``.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.base_url = (base_url if base_url is not None else config.DIRECTORY_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.DIRECTORY_API_KEY
        if not self.base_url or not self.api_key:
            raise RuntimeError("DIRECTORY_API_URL or DIRECTORY_API_KEY not set in environment")
        self.timeout = timeout if timeout is not None else config.DIRECTORY_TIMEOUT
        self.session = session or requests.Session()
        self.header_variants = [
            {"X-apikey": self.api_key, "Accept": "application/json"},
            {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"},
        ]

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        url = f"{self.base_url}{path}"
        last_resp = None
        for headers in self.header_variants:
            try:
                resp = self.session.get(url, headers=headers, params=params,
                                        timeout=self.timeout, verify=certifi.where())
            except requests.RequestException as e:
                raise DirectoryError(f"Network error calling {url}: {e}") from e
            last_resp = resp
            if resp.status_code == 200:
                try:
                    return resp.json()
                except ValueError as e:
                    raise DirectoryError(f"Invalid JSON from {url}: {e}") from e
            if resp.status_code == 404:
                return None
            # auth header not accepted; try the next variant
            if resp.status_code in (401, 403):
                continue
            break
        status = last_resp.status_code if last_resp is not None else "n/a"
        detail = last_resp.text[:300] if last_resp is not None else "<no response>"
        raise DirectoryError(f"GET {url} failed (tried {len(self.header_variants)} header variants): {status} {detail}")

    @staticmethod
    def _items(payload: Any) -> List[Dict[str, Any]]:
        if payload is None:
            return []
        if isinstance(payload, list):
            return [p for p in payload if isinstance(p, dict)]
        if isinstance(payload, dict):
            items = payload.get("items", payload.get("data"))
            if isinstance(items, list):
                return [p for p in items if isinstance(p, dict)]
        return []

    def _first(self, payload: Any) -> Optional[Client]:
        items = self._items(payload)
        if not items:
            return None
        # contact lookups return the contact with its client embedded
        item = items[0].get("client") or items[0]
        return Client.from_api(item) if item.get("id") is not None else None

    def search_by_email(self, email: str) -> Optional[Client]:
        return self._first(self._get("/api/v2/clients", {"email": email, "size": 1}))

    def search_by_phone(self, phone: str) -> Optional[Client]:
        return self._first(self._get("/api/v2/clients", {"tel": phone, "size": 1}))

    def get_by_id(self, client_id: str) -> Optional[Client]:
        payload = self._get(f"/api/v2/clients/{client_id}")
        if not isinstance(payload, dict) or payload.get("id") is None:
            return None
        return Client.from_api(payload)

    def list_page(self, page: int, size: int) -> List[Client]:
        """One page of clients (0-based), in stable id order."""
        payload = self._get("/api/v2/clients", {"page": page, "size": size, "sort": "id:asc"})
        clients = [Client.from_api(p) for p in self._items(payload) if p.get("id") is not None]
        logger.debug("directory page %d: %d clients", page, len(clients))
        return clients
