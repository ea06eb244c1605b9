"""
Hybrid extraction pipeline
--------------------------
Runs the applicable strategies for one document and folds their field trees
into a single ``MergedRecord``.

Selection:
- visual input (image/PDF): AI strategy, then a pattern pass over the OCR text it returned
- text input (email/plain): pattern strategy; AI only as enrichment when the
  pattern confidence is below ``PipelineConfig.enrich_below``

Merge, per leaf:
- implausible or blank candidates are discarded first
- a single producer wins; equal values agree
- on conflict: a reference-table value for a reference-backed field outranks an
  AI guess; otherwise higher strategy confidence wins, ties go by PRECEDENCE
  and are reported as a warning
- a missing value never replaces a present one

Post-merge passes run in this order: blank sentinels -> route backfill ->
formatting artifacts -> quality assessment.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..config import PipelineConfig
from ..models import (Document, ExtractionResult, FieldProvenance, MergedRecord, QualityAssessment,
                      flatten, prune, unflatten, validate_field_tree)
from ..utils.contact_utils import is_valid_email, normalize_phone
from . import places
from .ai_strategy import AIExtractionStrategy
from .pattern_strategy import PatternExtractionStrategy, extract_route
from .vehicle_reference import fold

logger = logging.getLogger(__name__)

# tie-break order when confidences are equal (higher wins)
PRECEDENCE = {"ai": 2, "pattern": 1}

# field classes where factory data outranks an AI guess
REFERENCE_BACKED = ("vehicle.dimensions.", "vehicle.weight_kg", "vehicle.engine_cc", "vehicle.fuel_type")

# weights of each strategy in the overall quality score
QUALITY_WEIGHTS = {"pattern": 0.6, "ai": 0.4}
LOW_COMPLETENESS_PENALTY = 0.9
BACKFILL_SOURCE = "route_backfill"
BACKFILL_CONFIDENCE = 0.5

BLANK_SENTINELS = frozenset({
    "unknown", "n/a", "na", "n\\a", "--", "-", "(unknown)", "not available", "not found",
    "tbd", "to be determined", "pending", "none", "null", "undefined", "???", "missing",
    "empty", "no data",
})

LOCATION_FIELDS = ("shipment.origin", "shipment.destination", "shipment.origin_port", "shipment.destination_port")
_PHONE_SHAPE_RE = re.compile(r"^[\d\s\-+().]{7,}$")
_VIN_SHAPE_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
_EMPTY_PARENS_RE = re.compile(r"\s*\(\s*\)")
_SPACES_RE = re.compile(r"[ \t]{2,}")


@dataclass(frozen=True)
class Candidate:
    value: Any
    strategy: str
    confidence: float
    source: str

    @property
    def from_reference(self) -> bool:
        return self.source == "reference"


# -----------------------------
# Leaf checks
# -----------------------------
def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        s = value.strip()
        return not s or s.lower() in BLANK_SENTINELS
    if isinstance(value, (list, dict)):
        return not value
    return False


def canonical_value(path: str, value: Any, contact_tokens=frozenset()) -> Any:
    """Cleaned leaf, or None when the value is blank or implausible for its field."""
    if is_blank(value):
        return None
    if isinstance(value, str):
        value = " ".join(value.split())
    if path in LOCATION_FIELDS:
        return value if places.is_plausible_location(value, contact_tokens) else None
    if path == "shipment.destination_options":
        if not isinstance(value, list):
            return None
        kept = [" ".join(str(v).split()) for v in value
                if not is_blank(v) and places.is_plausible_location(str(v), contact_tokens)]
        return kept or None
    if path == "contact.email":
        return value.lower() if is_valid_email(value) else None
    if path == "contact.phone":
        if not _PHONE_SHAPE_RE.match(str(value)):
            return None
        return normalize_phone(str(value))
    if path == "vehicle.vin":
        vin = str(value).replace(" ", "").upper()
        return vin if _VIN_SHAPE_RE.match(vin) else None
    return value


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return fold(a) == fold(b)
    if isinstance(a, list) and isinstance(b, list):
        return [fold(str(x)) for x in a] == [fold(str(x)) for x in b]
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return abs(float(a) - float(b)) < 1e-6
    return a == b


def _reference_backed(path: str) -> bool:
    return any(path == p or (p.endswith(".") and path.startswith(p)) for p in REFERENCE_BACKED)


# -----------------------------
# Merge
# -----------------------------
def contact_tokens_of(results: Sequence[ExtractionResult]) -> frozenset:
    tokens = set()
    for r in results:
        if r.success:
            tokens |= places.name_tokens((r.data.get("contact") or {}).get("name"))
    return frozenset(tokens)


def _rank(path: str, c: Candidate) -> Tuple[int, float, int]:
    ref = 1 if c.from_reference and _reference_backed(path) else 0
    return ref, c.confidence, PRECEDENCE.get(c.strategy, 0)


def merge_results(results: Sequence[ExtractionResult], contact_tokens=frozenset()
                  ) -> Tuple[Dict[str, Any], Dict[str, FieldProvenance], List[str]]:
    """Flat merged leaves, provenance per leaf and tie warnings."""
    candidates: Dict[str, List[Candidate]] = {}
    for r in results:
        if not r.success:
            continue
        sources = r.metadata.get("field_sources") or {}
        for path, raw in flatten(r.data).items():
            value = canonical_value(path, raw, contact_tokens)
            if value is None:
                if not is_blank(raw):
                    logger.debug("merge: %s=%r from %s rejected as implausible", path, raw, r.strategy_name)
                continue
            candidates.setdefault(path, []).append(
                Candidate(value, r.strategy_name, r.confidence, sources.get(path, "text")))

    leaves: Dict[str, Any] = {}
    provenance: Dict[str, FieldProvenance] = {}
    warnings: List[str] = []
    for path, cands in candidates.items():
        ranked = sorted(cands, key=lambda c: _rank(path, c), reverse=True)
        winner = ranked[0]
        rivals = [c for c in ranked[1:] if not _same(c.value, winner.value)]
        if rivals:
            runner = rivals[0]
            if _rank(path, runner)[:2] == _rank(path, winner)[:2]:
                warnings.append(f"merge tie on {path}: kept {winner.value!r} from {winner.strategy} "
                                f"over {runner.value!r} from {runner.strategy}")
            logger.debug("merge: %s -> %r (%s) over %r (%s)", path, winner.value, winner.strategy,
                         runner.value, runner.strategy)
        leaves[path] = winner.value
        provenance[path] = FieldProvenance(source_strategy=winner.strategy, confidence=winner.confidence)
    return leaves, provenance, warnings


# -----------------------------
# Post-merge passes
# -----------------------------
def normalize_blank_sentinels(tree: Mapping[str, Any]) -> Dict[str, Any]:
    """Blank-like sentinels ("N/A", "-", "unknown", empty strings) become missing values."""
    def clean(v):
        if isinstance(v, Mapping):
            return {k: clean(x) for k, x in v.items()}
        if isinstance(v, list):
            return [clean(x) for x in v if not is_blank(x)]
        return None if is_blank(v) else v
    return prune(clean(tree))


def backfill_route(tree: Mapping[str, Any], text: str, contact_tokens=frozenset()) -> Tuple[Dict[str, Any], List[str]]:
    """Fill missing origin/destination from free text; present values are kept."""
    leaves = flatten(tree)
    missing = [k for k in ("origin", "destination") if f"shipment.{k}" not in leaves]
    if not missing or not text:
        return dict(tree), []
    route = extract_route(text, contact_tokens)
    added = []
    for key in ("origin", "destination", "destination_options"):
        path = f"shipment.{key}"
        value = canonical_value(path, route.get(key), contact_tokens)
        if value is not None and path not in leaves:
            leaves[path] = value
            added.append(path)
    return unflatten(leaves), added


def strip_formatting_artifacts(tree: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop empty "()" groups and doubled spaces left behind in text leaves."""
    leaves = {}
    for path, value in flatten(tree).items():
        if isinstance(value, str):
            value = _SPACES_RE.sub(" ", _EMPTY_PARENS_RE.sub("", value)).strip(" ,;-")
        leaves[path] = value
    return prune(unflatten(leaves))


def assess_quality(tree: Mapping[str, Any], results: Sequence[ExtractionResult],
                   config: Optional[PipelineConfig] = None, extra_warnings: Sequence[str] = ()) -> QualityAssessment:
    config = config or PipelineConfig()
    leaves = flatten(tree)
    expected = config.expected_fields
    missing = [p for p in expected if is_blank(leaves.get(p))]
    completeness = round((len(expected) - len(missing)) / len(expected), 3) if expected else 1.0

    ok = [r for r in results if r.success]
    weight = sum(QUALITY_WEIGHTS.get(r.strategy_name, 0.5) for r in ok)
    quality = sum(QUALITY_WEIGHTS.get(r.strategy_name, 0.5) * r.confidence for r in ok) / weight if weight else 0.0

    warnings = list(extra_warnings)
    warnings += [f"strategy {r.strategy_name} failed: {r.error}" for r in results if not r.success]
    if not ok:
        warnings.append("all extraction strategies failed")
    if ok and completeness < config.low_completeness:
        quality *= LOW_COMPLETENESS_PENALTY
        warnings.append(f"low completeness: {completeness:.2f}")
    warnings += [f"missing field: {p}" for p in missing]
    return QualityAssessment(quality_score=round(quality, 3), completeness_score=completeness, warnings=warnings)


# -----------------------------
# Pipeline
# -----------------------------
class HybridExtractionPipeline:
    def __init__(self, pattern: Optional[PatternExtractionStrategy] = None,
                 ai: Optional[AIExtractionStrategy] = None, config: Optional[PipelineConfig] = None):
        self.pattern = pattern or PatternExtractionStrategy()
        self.ai = ai
        self.config = config or PipelineConfig()

    def _attempt(self, strategy, document: Document) -> ExtractionResult:
        try:
            result = strategy.extract(document)
        except Exception as e:
            logger.warning("strategy %s raised: %s", strategy.name, e)
            return ExtractionResult.failure(strategy.name, f"{type(e).__name__}: {e}")
        if not result.success:
            logger.warning("strategy %s failed: %s", strategy.name, result.error)
        return result

    def select(self, document: Document) -> List[ExtractionResult]:
        """Run the strategies that apply to this document, in order."""
        results: List[ExtractionResult] = []
        ai_ready = self.ai is not None and self.ai.supports(document)

        if document.is_visual:
            if ai_ready:
                ai_result = self._attempt(self.ai, document)
                results.append(ai_result)
                ocr_text = ai_result.metadata.get("raw_text")
                if ocr_text and not ai_result.metadata.get("fallback"):
                    results.append(self._attempt(self.pattern, Document(
                        channel=document.channel, mime_type=document.mime_type, content=document.content,
                        text=ocr_text, headers=document.headers)))
            elif self.pattern.supports(document):
                results.append(self._attempt(self.pattern, document))
            return results

        pattern_result = None
        if self.pattern.supports(document):
            pattern_result = self._attempt(self.pattern, document)
            results.append(pattern_result)
        low = pattern_result is None or not pattern_result.success \
            or pattern_result.confidence < self.config.enrich_below
        if ai_ready and low:
            logger.info("pattern confidence %.2f below %.2f, enriching with AI",
                        pattern_result.confidence if pattern_result else 0.0, self.config.enrich_below)
            results.append(self._attempt(self.ai, document))
        return results

    def run(self, document: Document) -> MergedRecord:
        results = self.select(document)
        return self.merge(results, self._free_text(document, results))

    @staticmethod
    def _free_text(document: Document, results: Sequence[ExtractionResult]) -> str:
        texts = [document.text or ""]
        texts += [r.metadata.get("raw_text") or "" for r in results]
        return "\n".join(t for t in texts if t)

    def merge(self, results: Sequence[ExtractionResult], text: str = "") -> MergedRecord:
        if not any(r.success for r in results):
            return MergedRecord(quality=assess_quality({}, results, self.config), strategies=[])

        tokens = contact_tokens_of(results)
        leaves, provenance, warnings = merge_results(results, tokens)

        tree = normalize_blank_sentinels(unflatten(leaves))
        tree, added = backfill_route(tree, text, tokens)
        for path in added:
            provenance[path] = FieldProvenance(source_strategy=BACKFILL_SOURCE, confidence=BACKFILL_CONFIDENCE)
        tree = strip_formatting_artifacts(tree)

        clean, dropped = validate_field_tree(tree)
        warnings += [f"invalid value dropped: {p}" for p in dropped]
        final_paths = set(flatten(clean))
        quality = assess_quality(clean, results, self.config, warnings)
        record = MergedRecord(
            **clean,
            quality=quality,
            provenance={p: v for p, v in provenance.items() if p in final_paths},
            strategies=[r.strategy_name for r in results if r.success],
        )
        logger.info("merged record: %d fields, quality %.2f, completeness %.2f",
                    len(final_paths), quality.quality_score, quality.completeness_score)
        return record
