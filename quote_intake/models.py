"""Typed data model for the intake pipeline.

Plain frozen dataclasses carry values between steps; the durable
``MergedRecord`` is a frozen pydantic schema so every section (contact,
vehicle, shipment, dates, pricing) has an explicit shape with optional leaves.
"""
from __future__ import annotations

import datetime
from copy import deepcopy
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class Channel(str, Enum):
    EMAIL = "email"
    IMAGE = "image"
    PDF = "pdf"


# -----------------------------
# Input side
# -----------------------------

@dataclass(frozen=True)
class RawInput:
    content: bytes | str
    mime_type: str
    channel: Channel
    headers: Mapping[str, str] = field(default_factory=dict)
    filename: Optional[str] = None

    @property
    def data(self) -> bytes:
        if isinstance(self.content, str):
            return self.content.encode("utf-8")
        return bytes(self.content)


@dataclass(frozen=True)
class Fingerprint:
    content_sha256: str
    message_id: Optional[str] = None


@dataclass(frozen=True)
class Document:
    """What the extraction strategies see for one input."""
    channel: Channel
    mime_type: str
    content: bytes
    text: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_visual(self) -> bool:
        return self.channel in (Channel.IMAGE, Channel.PDF)


@dataclass(frozen=True)
class ExtractionResult:
    strategy_name: str
    success: bool
    data: Dict[str, Any]
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def failure(cls, strategy_name: str, error: str, metadata: Optional[dict] = None) -> "ExtractionResult":
        return cls(strategy_name=strategy_name, success=False, data={},
                   confidence=0.0, metadata=dict(metadata or {}), error=error)


# -----------------------------
# Merged record schema
# -----------------------------

class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Contact(_Section):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None


class Dimensions(_Section):
    length_m: Optional[float] = None
    width_m: Optional[float] = None
    height_m: Optional[float] = None


class Vehicle(_Section):
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    vin: Optional[str] = None
    condition: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    engine_cc: Optional[int] = None
    color: Optional[str] = None
    type: Optional[str] = None
    dimensions: Dimensions = Field(default_factory=Dimensions)
    weight_kg: Optional[float] = None
    mileage_km: Optional[int] = None
    # derived from dimensions and weight
    calculated_volume_m3: Optional[float] = None
    shipping_weight_class: Optional[str] = None
    recommended_container: Optional[str] = None


class Shipment(_Section):
    origin: Optional[str] = None
    destination: Optional[str] = None
    destination_options: List[str] = Field(default_factory=list)
    shipping_type: Optional[str] = None
    container_size: Optional[str] = None
    origin_port: Optional[str] = None
    destination_port: Optional[str] = None
    cargo_description: Optional[str] = None


class Dates(_Section):
    pickup_date: Optional[datetime.date] = None
    delivery_date: Optional[datetime.date] = None
    etd_date: Optional[datetime.date] = None
    eta_date: Optional[datetime.date] = None


class Pricing(_Section):
    amount: Optional[float] = None
    currency: Optional[str] = None
    incoterm: Optional[str] = None


class QualityAssessment(_Section):
    quality_score: float = 0.0
    completeness_score: float = 0.0
    warnings: List[str] = Field(default_factory=list)


class FieldProvenance(_Section):
    source_strategy: str
    confidence: float


class LeafField(_Section):
    value: Any
    source_strategy: Optional[str] = None
    confidence: Optional[float] = None


class MergedRecord(_Section):
    contact: Contact = Field(default_factory=Contact)
    vehicle: Vehicle = Field(default_factory=Vehicle)
    shipment: Shipment = Field(default_factory=Shipment)
    dates: Dates = Field(default_factory=Dates)
    pricing: Pricing = Field(default_factory=Pricing)
    quality: QualityAssessment = Field(default_factory=QualityAssessment)
    provenance: Dict[str, FieldProvenance] = Field(default_factory=dict)
    strategies: List[str] = Field(default_factory=list)

    def value(self, path: str) -> Any:
        cur: Any = self.model_dump(include=set(SECTIONS))
        for part in path.split("."):
            if not isinstance(cur, dict) or part not in cur:
                return None
            cur = cur[part]
        return cur

    def field(self, path: str) -> LeafField:
        prov = self.provenance.get(path)
        return LeafField(
            value=self.value(path),
            source_strategy=prov.source_strategy if prov else None,
            confidence=prov.confidence if prov else None,
        )

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


# -----------------------------
# Client resolution
# -----------------------------

@dataclass(frozen=True)
class Client:
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "Client":
        return cls(
            id=str(payload.get("id")),
            name=(payload.get("name") or "").strip(),
            email=payload.get("email") or None,
            phone=payload.get("tel") or payload.get("phone") or None,
        )


@dataclass(frozen=True)
class ClientHints:
    id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_record(cls, record: MergedRecord, client_id: Optional[str] = None) -> "ClientHints":
        contact = record.contact
        # the directory holds companies; fall back to the person's name
        return cls(
            id=client_id,
            email=contact.email,
            phone=contact.phone,
            name=contact.company or contact.name,
        )

    def is_empty(self) -> bool:
        return not any((self.id, self.email, self.phone, self.name))


@dataclass(frozen=True)
class ClientMatch:
    id: Optional[str]
    name: Optional[str]
    confidence: float
    method: Optional[str]
    warnings: Tuple[str, ...] = ()

    @property
    def matched(self) -> bool:
        return self.id is not None

    @classmethod
    def no_match(cls, warnings: Tuple[str, ...] = ()) -> "ClientMatch":
        return cls(id=None, name=None, confidence=0.0, method=None, warnings=tuple(warnings))

    def to_dict(self) -> dict:
        out = asdict(self)
        out["warnings"] = list(self.warnings)
        out["matched"] = self.matched
        return out


# -----------------------------
# Deduplication / orchestration
# -----------------------------

@dataclass(frozen=True)
class DuplicateCheck:
    is_duplicate: bool
    existing_ref: Optional[str] = None
    matched_on: Optional[str] = None


@dataclass(frozen=True)
class LedgerWrite:
    recorded: bool
    duplicate_of: Optional[str] = None
    warning: Optional[str] = None


@dataclass(frozen=True)
class IntakeOutcome:
    status: str
    fingerprint: Fingerprint
    ref: Optional[str] = None
    record: Optional[MergedRecord] = None
    client_match: Optional[ClientMatch] = None
    duplicate_of: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    @property
    def is_duplicate(self) -> bool:
        return self.status == "duplicate"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "ref": self.ref,
            "duplicate_of": self.duplicate_of,
            "fingerprint": asdict(self.fingerprint),
            "record": self.record.to_dict() if self.record else None,
            "client_match": self.client_match.to_dict() if self.client_match else None,
            "warnings": list(self.warnings),
        }


# -----------------------------
# Field tree validation
# -----------------------------

SECTIONS = {
    "contact": Contact, "vehicle": Vehicle, "shipment": Shipment, "dates": Dates, "pricing": Pricing,
}


def prune(value: Any) -> Any:
    """Drop None, empty strings and empty containers, recursively."""
    if isinstance(value, Mapping):
        out = {k: prune(v) for k, v in value.items()}
        return {k: v for k, v in out.items() if v not in (None, "", [], {})}
    if isinstance(value, list):
        return [v for v in (prune(v) for v in value) if v not in (None, "", [], {})]
    return value


def _drop(raw: dict, loc: Tuple[Any, ...]) -> None:
    node = raw
    for i, key in enumerate(loc):
        if not isinstance(node, dict) or key not in node:
            raw.pop(loc[0], None)
            return
        if i == len(loc) - 1 or not isinstance(node[key], dict):
            node.pop(key, None)
            return
        node = node[key]


def validate_field_tree(tree: Any) -> Tuple[Dict[str, Any], List[str]]:
    """Coerce a raw strategy tree into the section schemas.

    Leaves that fail validation are dropped (and reported) instead of failing
    the whole tree. Returns (clean pruned tree, dropped dot-paths).
    """
    clean: Dict[str, Any] = {}
    dropped: List[str] = []
    if not isinstance(tree, Mapping):
        return clean, ["<root>"] if tree else []
    for name, schema in SECTIONS.items():
        raw = tree.get(name)
        if raw is None:
            continue
        if not isinstance(raw, Mapping):
            dropped.append(name)
            continue
        raw = prune(deepcopy(dict(raw)))
        section = None
        while section is None:
            try:
                section = schema.model_validate(raw)
            except ValidationError as e:
                before = deepcopy(raw)
                for err in e.errors():
                    loc = tuple(err.get("loc") or ())
                    dropped.append(".".join([name, *(str(p) for p in loc)]))
                    if loc:
                        _drop(raw, loc)
                if raw == before:
                    raw = {}
        values = prune(section.model_dump())
        if values:
            clean[name] = values
    return clean, dropped


def flatten(tree: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Nested field tree -> {dot.path: leaf}; lists are leaves."""
    out: Dict[str, Any] = {}
    for key, value in tree.items():
        path = f"{prefix}{key}"
        if isinstance(value, Mapping):
            out.update(flatten(value, path + "."))
        else:
            out[path] = value
    return out


def unflatten(leaves: Mapping[str, Any]) -> Dict[str, Any]:
    tree: Dict[str, Any] = {}
    for path, value in leaves.items():
        node = tree
        *parents, last = path.split(".")
        for part in parents:
            node = node.setdefault(part, {})
        node[last] = value
    return tree
