"""
AI / vision extraction strategy
-------------------------------
Adapter between a black-box capability (see ``ai_backends``) and the
``ExtractionResult`` contract.

- exactly one ``analyze`` call per ``extract``; the caller's timeout is passed through
- any exception from the capability becomes ``success=False`` with the error detail
- output is validated against the section schemas; leaves that do not fit are dropped
- empty or garbled output falls back to the pattern strategy on the returned OCR text;
  partially valid output is backfilled from that same pattern pass
"""
import logging
from typing import Any, Dict, Mapping, Optional

from .. import config
from ..models import Document, ExtractionResult, SECTIONS, flatten, unflatten, validate_field_tree
from .pattern_strategy import PatternExtractionStrategy

logger = logging.getLogger(__name__)

STRATEGY_NAME = "ai"
DEFAULT_CONFIDENCE = 0.5


def normalize_confidence(value: Any) -> float:
    """0..1 or 0..100 -> 0..1; unusable values give the default."""
    try:
        conf = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if conf != conf:  # NaN
        return DEFAULT_CONFIDENCE
    if conf > 1.0:
        conf = conf / 100.0
    return round(min(max(conf, 0.0), 1.0), 3)


def split_response(response: Any) -> tuple[Any, Any, Optional[str]]:
    """(fields, confidence, raw_text) from whatever the capability returned."""
    if isinstance(response, str):
        return {}, None, response
    if not isinstance(response, Mapping):
        return None, None, None
    raw_text = response.get("raw_text") or response.get("text")
    if not isinstance(raw_text, str):
        raw_text = None
    fields = response.get("fields")
    if fields is None and any(k in response for k in SECTIONS):
        fields = {k: response[k] for k in SECTIONS if k in response}
    return fields, response.get("confidence"), raw_text


class AIExtractionStrategy:
    name = STRATEGY_NAME

    def __init__(self, capability, fallback: Optional[PatternExtractionStrategy] = None,
                 timeout: Optional[float] = None):
        self.capability = capability
        self.fallback = fallback or PatternExtractionStrategy()
        self.timeout = config.AI_TIMEOUT if timeout is None else timeout

    def supports(self, document: Document) -> bool:
        if self.capability is None:
            return False
        return document.is_visual or bool(document.text and document.text.strip())

    def extract(self, document: Document, hint: Optional[Mapping[str, Any]] = None) -> ExtractionResult:
        payload = document.content if document.is_visual else document.text
        call_hint: Dict[str, Any] = {"channel": document.channel.value, "mime_type": document.mime_type}
        call_hint.update(hint or {})
        metadata: Dict[str, Any] = {"extraction_method": "ai_capability",
                                    "backend": type(self.capability).__name__}

        try:
            response = self.capability.analyze(payload, call_hint, self.timeout)
        except Exception as e:  # timeouts, HTTP and SDK errors alike
            logger.warning("AI capability failed: %s: %s", type(e).__name__, e)
            return ExtractionResult.failure(self.name, f"{type(e).__name__}: {e}", metadata)

        fields, confidence, raw_text = split_response(response)
        clean, dropped = validate_field_tree(fields)
        if raw_text:
            metadata["raw_text"] = raw_text
        if dropped:
            metadata["dropped_fields"] = dropped

        if not clean:
            return self._fallback_only(raw_text, metadata)

        sources = {path: "model" for path in flatten(clean)}
        if dropped and raw_text:
            clean, sources = self._backfill(clean, sources, raw_text, document, metadata)
        metadata["field_sources"] = sources
        return ExtractionResult(self.name, True, clean, normalize_confidence(confidence), metadata)

    def _fallback_only(self, raw_text: Optional[str], metadata: Dict[str, Any]) -> ExtractionResult:
        if not raw_text:
            logger.warning("AI response empty or garbled and no OCR text returned")
            return ExtractionResult.failure(self.name, "empty or garbled response", metadata)
        fallback = self.fallback.extract(raw_text)
        metadata["fallback"] = "pattern_on_ocr_text"
        if not fallback.success:
            return ExtractionResult.failure(
                self.name, f"empty or garbled response; fallback: {fallback.error}", metadata)
        logger.info("AI response unusable; pattern fallback on OCR text (confidence %.2f)", fallback.confidence)
        metadata["field_sources"] = dict(fallback.metadata.get("field_sources") or {})
        return ExtractionResult(self.name, True, fallback.data, fallback.confidence, metadata)

    def _backfill(self, clean, sources, raw_text, document, metadata):
        fallback = self.fallback.extract(raw_text, document.headers)
        if not fallback.success:
            return clean, sources
        leaves = flatten(clean)
        fb_sources = fallback.metadata.get("field_sources") or {}
        added = []
        for path, value in flatten(fallback.data).items():
            if path not in leaves:
                leaves[path] = value
                sources[path] = fb_sources.get(path, "text")
                added.append(path)
        if added:
            metadata["backfilled_fields"] = sorted(added)
        return unflatten(leaves), sources
