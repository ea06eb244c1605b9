import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import List, Mapping, Optional

from . import config
from .directory_client import DirectoryClient
from .errors import InputError
from .ledger import SqliteFingerprintLedger
from .models import Channel, ClientHints, ClientMatch, Document, IntakeOutcome, RawInput
from .pipeline.ai_backends import build_capability
from .pipeline.ai_strategy import AIExtractionStrategy
from .pipeline.client_resolver import ClientResolver
from .pipeline.dedup import DeduplicationGate
from .pipeline.hybrid import HybridExtractionPipeline
from .pipeline.pattern_strategy import PatternExtractionStrategy
from .utils.data_collector import collect_and_write
from .utils.fingerprint import extract_plain_body, from_raw, parse_headers

logger = logging.getLogger(__name__)

SUPPORTED_MIME = {
    Channel.EMAIL: ("message/rfc822", "text/plain", "text/html"),
    Channel.IMAGE: ("image/png", "image/jpeg", "image/gif", "image/webp", "image/tiff", "image/bmp"),
    Channel.PDF: ("application/pdf",),
}

CSV_COLUMNS = [
    "status",
    "ref",
    "duplicate_of",
    "fingerprint.message_id",
    "record.contact.name",
    "record.contact.email",
    "record.contact.phone",
    "record.contact.company",
    "record.vehicle.brand",
    "record.vehicle.model",
    "record.vehicle.year",
    "record.vehicle.dimensions.length_m",
    "record.vehicle.dimensions.width_m",
    "record.vehicle.dimensions.height_m",
    "record.vehicle.weight_kg",
    "record.vehicle.mileage_km",
    "record.vehicle.recommended_container",
    "record.shipment.origin",
    "record.shipment.destination",
    "record.shipment.destination_options[*]",
    "record.shipment.shipping_type",
    "record.dates.pickup_date",
    "record.pricing.amount",
    "record.pricing.currency",
    "record.pricing.incoterm",
    "record.quality.quality_score",
    "record.quality.completeness_score",
    "client_match.id",
    "client_match.method",
    "client_match.confidence",
    "warnings[*]",
]


def validate_input(raw: RawInput) -> None:
    if not isinstance(raw.channel, Channel):
        raise InputError(f"unsupported channel {raw.channel!r}")
    mime = (raw.mime_type or "").split(";")[0].strip().lower()
    if mime not in SUPPORTED_MIME[raw.channel]:
        raise InputError(f"unsupported MIME type {raw.mime_type!r} for channel {raw.channel.value}")
    if raw.content is None or not raw.data.strip():
        raise InputError("empty input")


class IntakeProcessor:
    """fingerprint -> dedup gate -> hybrid extraction -> ledger -> client resolution"""

    def __init__(self, pipeline: HybridExtractionPipeline, gate: DeduplicationGate,
                 resolver: Optional[ClientResolver] = None):
        self.pipeline = pipeline
        self.gate = gate
        self.resolver = resolver

    @classmethod
    def from_env(cls, ledger_path: Optional[str] = None, use_ai: bool = True) -> "IntakeProcessor":
        pipeline_config = config.PipelineConfig.from_env()
        pattern = PatternExtractionStrategy(config.PatternConfig.from_env())
        capability = build_capability() if use_ai else None
        ai = AIExtractionStrategy(capability, fallback=pattern, timeout=pipeline_config.ai_timeout) \
            if capability is not None else None
        resolver = None
        if config.DIRECTORY_API_URL and config.DIRECTORY_API_KEY:
            resolver = ClientResolver(DirectoryClient(), config.ResolverConfig.from_env())
        else:
            logger.warning("customer directory not configured; client resolution disabled")
        return cls(
            HybridExtractionPipeline(pattern, ai, pipeline_config),
            DeduplicationGate(SqliteFingerprintLedger(ledger_path or config.LEDGER_PATH)),
            resolver,
        )

    @staticmethod
    def _headers(raw: RawInput) -> dict:
        headers = {}
        if raw.channel == Channel.EMAIL:
            headers.update(parse_headers(raw.data, raw.mime_type))
        for key, value in (raw.headers or {}).items():
            if value:
                headers.setdefault(key.lower(), value)
        return headers

    def process(self, raw: RawInput, ref: Optional[str] = None, client_id: Optional[str] = None) -> IntakeOutcome:
        validate_input(raw)

        headers = self._headers(raw)
        body = extract_plain_body(raw.data, raw.mime_type) if raw.channel == Channel.EMAIL else ""
        fp = from_raw(raw.data, headers, body)
        ref = ref or f"intake-{fp.content_sha256[:16]}"

        check = self.gate.is_duplicate(fp)
        if check.is_duplicate:
            return IntakeOutcome(status="duplicate", fingerprint=fp, ref=ref, duplicate_of=check.existing_ref)

        document = Document(channel=raw.channel, mime_type=raw.mime_type, content=raw.data,
                            text=body, headers=headers)
        record = self.pipeline.run(document)

        write = self.gate.record_processed(fp, ref)
        if write.duplicate_of is not None:
            return IntakeOutcome(status="duplicate", fingerprint=fp, ref=ref, duplicate_of=write.duplicate_of)
        warnings: List[str] = [write.warning] if write.warning else []

        match = self._resolve(ClientHints.from_record(record, client_id))
        warnings += list(match.warnings)
        logger.info("processed %s: quality %.2f, client %s", ref, record.quality.quality_score,
                    match.id if match.matched else "none")
        return IntakeOutcome(status="processed", fingerprint=fp, ref=ref, record=record,
                             client_match=match, warnings=tuple(warnings))

    def _resolve(self, hints: ClientHints) -> ClientMatch:
        if self.resolver is None:
            return ClientMatch.no_match(("client directory not configured",))
        if hints.is_empty():
            return ClientMatch.no_match()
        return self.resolver.resolve(hints)


# -----------------------------
# CLI
# -----------------------------
def channel_for(mime_type: str) -> Channel:
    if mime_type.startswith("image/"):
        return Channel.IMAGE
    if mime_type == "application/pdf":
        return Channel.PDF
    return Channel.EMAIL


def load_raw(path: Path, headers: Optional[Mapping[str, str]] = None) -> RawInput:
    mime = "message/rfc822" if path.suffix.lower() == ".eml" else (mimetypes.guess_type(path.name)[0] or "text/plain")
    return RawInput(content=path.read_bytes(), mime_type=mime, channel=channel_for(mime),
                    headers=dict(headers or {}), filename=path.name)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Extract freight quote requests from emails, images and PDFs.")
    parser.add_argument("files", nargs="+", help="Input files (.eml, .txt, .png, .jpg, .pdf, ...)")
    parser.add_argument("--csv", help="Also write selected columns of all outcomes to this CSV file")
    parser.add_argument("--ledger", help=f"Fingerprint ledger path (default: {config.LEDGER_PATH})")
    parser.add_argument("--no-ai", action="store_true", help="Disable the AI/vision strategy")
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    args = parser.parse_args(argv)

    config.configure_logging(args.log_level)
    processor = IntakeProcessor.from_env(ledger_path=args.ledger, use_ai=not args.no_ai)

    outcomes = []
    failed = 0
    for name in args.files:
        path = Path(name)
        try:
            outcome = processor.process(load_raw(path))
        except (InputError, OSError) as e:
            logger.error("%s: %s", path, e)
            failed += 1
            continue
        data = outcome.to_dict()
        data["file"] = path.name
        print(json.dumps(data, indent=2, ensure_ascii=False))
        outcomes.append(data)

    if args.csv:
        collect_and_write(outcomes, ["file", *CSV_COLUMNS], args.csv)
        logger.info("CSV written: %s (%d rows)", args.csv, len(outcomes))
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
