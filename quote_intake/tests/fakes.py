"""In-memory stand-ins for the customer directory and the AI capability."""
from typing import Any, Dict, Iterable, List, Optional

from quote_intake.errors import DirectoryError
from quote_intake.models import Client
from quote_intake.utils.contact_utils import normalize_phone


class FakeDirectory:
    def __init__(self, clients: Iterable[Client] = (), failing: Iterable[str] = ()):
        self.clients: List[Client] = list(clients)
        self.failing = set(failing)
        self.calls: List[tuple] = []

    def _call(self, op: str, *args) -> None:
        self.calls.append((op, *args))
        if op in self.failing:
            raise DirectoryError(f"{op}: connection timed out")

    def get_by_id(self, client_id: str) -> Optional[Client]:
        self._call("get_by_id", client_id)
        return next((c for c in self.clients if c.id == str(client_id)), None)

    def search_by_email(self, email: str) -> Optional[Client]:
        self._call("search_by_email", email)
        return next((c for c in self.clients if c.email and c.email.lower() == email.lower()), None)

    def search_by_phone(self, phone: str) -> Optional[Client]:
        self._call("search_by_phone", phone)
        return next((c for c in self.clients if c.phone and normalize_phone(c.phone) == phone), None)

    def list_page(self, page: int, size: int) -> List[Client]:
        self._call("list_page", page, size)
        return self.clients[page * size:(page + 1) * size]

    def ops(self) -> List[str]:
        return [c[0] for c in self.calls]


class FakeCapability:
    """Returns a canned response (or raises) and records every call."""

    def __init__(self, response: Any = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def analyze(self, payload, hint, timeout):
        self.calls.append({"payload": payload, "hint": dict(hint), "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response
