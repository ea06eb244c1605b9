"""
Client resolver
---------------
Maps ``ClientHints`` to a directory client through one fixed path, whatever
channel the request came in on:

    id -> email -> phone -> name (fuzzy, paged)

The first stage with a hit wins. id/email/phone hits are exact (confidence 1.0);
the name stage keeps the best similarity over at most ``max_pages`` pages and
accepts it only at or above ``name_threshold`` (confidence = similarity / 100).
A stage that errors is logged and skipped; no hit anywhere is an explicit
no-match, not an error.

Phones are looked up as ``normalize_phone`` returns them: digits with a leading
"+" when the number carries a country code, bare digits for national numbers.
"""
import logging
from typing import List, Optional, Protocol, Tuple

from ..config import ResolverConfig
from ..errors import DirectoryError, ResolutionStageError
from ..models import Client, ClientHints, ClientMatch
from ..utils.contact_utils import is_valid_email, normalize_phone
from ..utils.names import similarity

logger = logging.getLogger(__name__)

STAGE_ERRORS = (DirectoryError, ResolutionStageError, OSError)


class Directory(Protocol):
    def search_by_email(self, email: str) -> Optional[Client]: ...

    def search_by_phone(self, phone: str) -> Optional[Client]: ...

    def get_by_id(self, client_id: str) -> Optional[Client]: ...

    def list_page(self, page: int, size: int) -> List[Client]: ...


class ClientResolver:
    def __init__(self, directory: Directory, config: Optional[ResolverConfig] = None):
        self.directory = directory
        self.config = config or ResolverConfig()

    def resolve(self, hints: ClientHints) -> ClientMatch:
        warnings: List[str] = []
        stages = (
            ("id", self._by_id),
            ("email", self._by_email),
            ("phone", self._by_phone),
            ("name", self._by_name),
        )
        for method, stage in stages:
            try:
                hit = stage(hints)
            except STAGE_ERRORS as e:
                logger.warning("client resolution stage %s failed: %s", method, e)
                warnings.append(f"{method} stage failed: {e}")
                continue
            if hit is not None:
                client, confidence = hit
                logger.info("client resolved by %s: %s (%s) confidence %.2f",
                            method, client.id, client.name, confidence)
                return ClientMatch(id=client.id, name=client.name, confidence=confidence,
                                   method=method, warnings=tuple(warnings))
        logger.info("no directory client matched")
        return ClientMatch.no_match(tuple(warnings))

    # -- stages; each returns (client, confidence) or None --

    def _by_id(self, hints: ClientHints) -> Optional[Tuple[Client, float]]:
        if not hints.id:
            return None
        client = self.directory.get_by_id(str(hints.id))
        return (client, 1.0) if client else None

    def _by_email(self, hints: ClientHints) -> Optional[Tuple[Client, float]]:
        if not hints.email:
            return None
        if not is_valid_email(hints.email):
            logger.debug("email hint %r fails the shape check, stage skipped", hints.email)
            return None
        client = self.directory.search_by_email(hints.email.strip().lower())
        return (client, 1.0) if client else None

    def _by_phone(self, hints: ClientHints) -> Optional[Tuple[Client, float]]:
        phone = normalize_phone(hints.phone)
        if not phone:
            return None
        client = self.directory.search_by_phone(phone)
        return (client, 1.0) if client else None

    def _by_name(self, hints: ClientHints) -> Optional[Tuple[Client, float]]:
        if not hints.name or not hints.name.strip():
            return None
        size = self.config.page_size
        best: Optional[Client] = None
        best_score = -1.0
        for page in range(self.config.max_pages):
            clients = self.directory.list_page(page, size)
            for client in clients:
                score = similarity(hints.name, client.name)
                # strict '>' keeps the first client on equal scores
                if score > best_score:
                    best, best_score = client, score
            if best_score >= 100 or len(clients) < size:
                break
        if best is None or best_score < self.config.name_threshold:
            logger.debug("best name candidate %r scored %.2f, below %.2f",
                         best.name if best else None, best_score, self.config.name_threshold)
            return None
        return best, round(best_score / 100.0, 4)
