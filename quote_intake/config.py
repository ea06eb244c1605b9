import logging
import os
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()

# --- External customer directory ---
DIRECTORY_API_URL = (os.getenv("DIRECTORY_API_URL") or "").strip().rstrip("/")
DIRECTORY_API_KEY = (os.getenv("DIRECTORY_API_KEY") or "").strip()
DIRECTORY_TIMEOUT = float(os.getenv("DIRECTORY_TIMEOUT", "20"))
DIRECTORY_PAGE_SIZE = int(os.getenv("DIRECTORY_PAGE_SIZE", "100"))

# --- AI / vision backend ---
AI_BACKEND = os.getenv("AI_BACKEND", "openai")  # openai, ollama or none
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OLLAMA_API_URL = os.getenv("OLLAMA_API_URL", "http://127.0.0.1:11434/api/generate")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llava")
AI_TIMEOUT = float(os.getenv("AI_TIMEOUT", "60"))
AI_ENRICH_BELOW = float(os.getenv("AI_ENRICH_BELOW", "0.5"))

# --- Fingerprint ledger ---
LEDGER_PATH = os.getenv("LEDGER_PATH", "intake_ledger.sqlite3")

# --- Client resolution ---
NAME_MATCH_THRESHOLD = float(os.getenv("NAME_MATCH_THRESHOLD", "80"))
NAME_MATCH_MAX_PAGES = int(os.getenv("NAME_MATCH_MAX_PAGES", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Fields every quote request should carry; drives completeness and warnings.
EXPECTED_FIELDS: Tuple[str, ...] = (
    "contact.name",
    "contact.email",
    "contact.phone",
    "vehicle.brand",
    "vehicle.model",
    "vehicle.dimensions.length_m",
    "vehicle.dimensions.width_m",
    "vehicle.dimensions.height_m",
    "vehicle.weight_kg",
    "shipment.origin",
    "shipment.destination",
    "shipment.shipping_type",
)


@dataclass(frozen=True)
class PipelineConfig:
    ai_timeout: float = 60.0
    # text inputs get an AI pass only when pattern confidence is below this
    enrich_below: float = 0.5
    expected_fields: Tuple[str, ...] = EXPECTED_FIELDS
    low_completeness: float = 0.5

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(ai_timeout=AI_TIMEOUT, enrich_below=AI_ENRICH_BELOW)


@dataclass(frozen=True)
class ResolverConfig:
    name_threshold: float = 80.0
    max_pages: int = 10
    page_size: int = 100

    @classmethod
    def from_env(cls) -> "ResolverConfig":
        return cls(
            name_threshold=NAME_MATCH_THRESHOLD,
            max_pages=NAME_MATCH_MAX_PAGES,
            page_size=DIRECTORY_PAGE_SIZE,
        )


@dataclass(frozen=True)
class PatternConfig:
    generic_domains: frozenset = field(default_factory=lambda: frozenset({
        "gmail.com", "googlemail.com", "outlook.com", "hotmail.com", "live.com",
        "yahoo.com", "icloud.com", "aol.com", "msn.com", "web.de", "gmx.de",
        "posteo.de", "mail.ru", "example.com", "skynet.be", "telenet.be",
    }))
    # the internal mailbox never counts as the customer
    own_domains: frozenset = frozenset()
    context_window: int = 40

    @classmethod
    def from_env(cls) -> "PatternConfig":
        own = os.getenv("OWN_EMAIL_DOMAINS", "")
        return cls(own_domains=frozenset(d.strip().lower() for d in own.split(",") if d.strip()))


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
