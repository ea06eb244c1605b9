"""
Regex/dictionary extraction strategy
------------------------------------
Turns free text (email body, OCR text) into the nested field tree used by the
merge step:

    {
      "contact":  {"name", "email", "phone", "company"},
      "vehicle":  {"brand", "model", "year", "vin", "condition", "fuel_type",
                   "transmission", "engine_cc", "color", "type",
                   "dimensions": {"length_m", "width_m", "height_m"}, "weight_kg",
                   "mileage_km", "calculated_volume_m3", "shipping_weight_class",
                   "recommended_container"},
      "shipment": {"origin", "destination", "destination_options", "shipping_type",
                   "container_size", "origin_port", "destination_port",
                   "cargo_description"},
      "dates":    {"pickup_date", "delivery_date", "etd_date", "eta_date"},
      "pricing":  {"amount", "currency", "incoterm"}
    }

Field groups (contact, vehicle, dimensions, route, dates, pricing) run
independently; a group that raises is recorded in the metadata and the others
still contribute. Confidence is the share of the core groups (all but dates
and pricing) that produced at least one hit.

Design notes:
- Vehicle make/model come from the reference table (longest alias wins).
  Reference values backfill missing dimensions/weight/engine/fuel and never
  replace a value found in the text; such fields are tagged "reference" in
  ``metadata["field_sources"]``.
- Measurements are unit-aware and normalized to meters and kilograms.
- Volume, weight class and recommended container are derived from the final
  dimensions and weight and tagged "derived".
- Numeric dates are read day first; amounts keep their currency (USD/EUR/GBP).
- Route values equal to a token of the contact name are discarded.
- The contact name falls back to spaCy NER on the signature block; with no
  trained pipeline installed the blank multilingual pipeline finds nothing.
"""
from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from email.utils import parseaddr
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple

import spacy

from ..config import PatternConfig
from ..models import Document, ExtractionResult
from ..utils.contact_utils import EMAIL_RE, email_domain, normalize_phone
from . import places, vehicle_reference
from .vehicle_reference import VehicleSpec, fold

logger = logging.getLogger(__name__)

STRATEGY_NAME = "pattern"

# groups counted in the confidence share
CORE_GROUPS = ("contact", "vehicle", "dimensions", "route")

SPACY_MODELS = ("de_core_news_md", "xx_ent_wiki_sm", "en_core_web_sm")

# -----------------------------
# Contact patterns
# -----------------------------
_ANGLE_EMAIL_RE = re.compile(r"<\s*([\w.+-]+@[\w-]+(?:\.[\w-]+)*\.[A-Za-z]{2,})\s*>")
_NAME_WORD_RE = re.compile(r"^[^\W\d_]+(?:['\-][^\W\d_]+)*$")
_PHONE_LABELED_RE = re.compile(
    r"(?i:\b(?:tel|tél|phone|mobile|mob|gsm|cell|telefon|téléphone|telefoon|whatsapp|handy)\b)"
    r"\.?\s*[:.]?\s*((?:\+|00)?\d[\d \t().\-/]{5,}\d)"
)
_PHONE_INTL_RE = re.compile(r"(?<![\w+])((?:\+|00)\d[\d \t().\-/]{6,}\d)")
_NAME_PHRASE_RE = re.compile(
    r"(?i:\b(?:je\s+suis|moi\s+c'est|my\s+name\s+is|ich\s+bin|mein\s+name\s+ist|"
    r"mijn\s+naam\s+is|ik\s+ben)\s+)"
    r"([A-ZÀ-ÖØ-Þ][^\W\d_]+(?:[\s\-][A-ZÀ-ÖØ-Þ][^\W\d_]+){0,2})"
)
# start of the signature block
SIGN_OFF_REGEX = re.compile(
    r"(?:Mit freundlichen Grüßen|Freundliche Grüße|Beste Grüße|Viele Grüße|Grüße|"
    r"Best regards|Kind regards|Regards|Sincerely|Yours faithfully|Thank you|Thanks|"
    r"Cordialement|Bien à vous|Salutations|Met vriendelijke groet(?:en)?|"
    r"Vriendelijke groeten|Groeten|Saludos)",
    re.IGNORECASE,
)
# legal suffixes that mark a company line in a signature
_COMPANY_SUFFIXES = frozenset({
    "bv", "bvba", "sprl", "srl", "sa", "sas", "sarl", "nv", "vof", "gmbh", "ag", "kg",
    "ltd", "limited", "llc", "plc", "inc", "corp", "spa", "sl", "oy",
})
_NAME_BLOCKLIST = frozenset({
    "merci", "cordialement", "regards", "best", "sincerely", "thanks", "thank you",
    "kind regards", "best regards", "bonjour", "hello", "dear", "groeten",
})

# -----------------------------
# Vehicle patterns
# -----------------------------
_VIN_RE = re.compile(r"\b(?=[A-HJ-NPR-Z0-9]*\d)(?=[A-HJ-NPR-Z0-9]*[A-HJ-NPR-Z])[A-HJ-NPR-Z0-9]{17}\b", re.IGNORECASE)
_MODEL_YEAR_RE = re.compile(r"\b(?:model(?:\s+year)?|year|bouwjaar|baujahr|ann[ée]e|jaar)\s*[:=]?\s*((?:19|20)\d{2})\b", re.IGNORECASE)
_YEAR_RE = re.compile(r"(?<![\d/.\-])((?:19|20)\d{2})(?![\d/.\-]\d)")
_YEAR_CONTEXT = ("model", "year", "vehicle", "car", "manufactured", "built", "bouwjaar",
                 "baujahr", "annee", "modele", "jaar", "jahr", "registration", "circulation")
_ENGINE_RE = re.compile(r"\b(\d{3,4})\s*(?:cc|ccm|cm3|cm³)(?![\w³])", re.IGNORECASE)
_FUEL_RE = re.compile(
    r"\b(diesel|petrol|gasoline|benzine|benzin|essence|electric|électrique|elektrisch|elektro|"
    r"hybrid|hybride|lpg|cng)\b", re.IGNORECASE)
_FUEL_MAP = {
    "gasoline": "petrol", "benzine": "petrol", "benzin": "petrol", "essence": "petrol",
    "électrique": "electric", "elektrisch": "electric", "elektro": "electric",
    "hybride": "hybrid",
}
_TRANSMISSION_RE = re.compile(
    r"\b(automatic|automatique|automatik|automaat|manual|manuelle|manuel|schaltgetriebe|"
    r"handgeschakeld|stick|cvt)\b", re.IGNORECASE)
_CONDITION_RE = re.compile(
    r"\b(brand[\s-]?new|neuf|neuve|nieuw|neuwagen|used|occasion|gebraucht|tweedehands|"
    r"pre[\s-]?owned|second[\s-]?hand|damaged|accident(?:ed)?|accidenté|salvage|"
    r"non[\s-]?runner|beschädigt|beschadigd)\b", re.IGNORECASE)
_COLOR_MAP = {
    "black": "black", "noir": "black", "noire": "black", "schwarz": "black", "zwart": "black",
    "white": "white", "blanc": "white", "blanche": "white", "weiss": "white", "weiß": "white", "wit": "white",
    "silver": "silver", "silber": "silver", "zilver": "silver",
    "grey": "grey", "gray": "grey", "gris": "grey", "grise": "grey", "grijs": "grey",
    "red": "red", "rouge": "red", "rood": "red",
    "blue": "blue", "bleu": "blue", "bleue": "blue", "blauw": "blue",
    "green": "green", "vert": "green", "yellow": "yellow", "orange": "orange",
    "brown": "brown", "beige": "beige", "gold": "gold",
}
_COLOR_RE = re.compile(r"\b(" + "|".join(sorted(_COLOR_MAP, key=len, reverse=True)) + r")\b", re.IGNORECASE)
_MODEL_WORD_RE = re.compile(r"[\s\-]+([a-z0-9][\w\-]*)(?:\s+(\d{1,3}|[a-z]\d*))?(?!\w)")
_MODEL_STOPWORDS = frozenset({
    "from", "to", "de", "vers", "for", "in", "on", "at", "with", "and", "et", "van", "naar",
    "nach", "ab", "the", "a", "car", "vehicle", "voiture", "auto", "is", "please",
})

# -----------------------------
# Measurement patterns
# -----------------------------
_NUM = r"(\d+(?:[.,]\d+)?)"
_LEN_UNIT = r"(mm|millimet(?:er|re)s?|cm|centimet(?:er|re)s?|m[eè]t(?:er|re)s?|mtr|m|ft|feet|foot|inch(?:es)?|in)"
_TRIPLET_RE = re.compile(
    _NUM + r"\s*" + _LEN_UNIT + r"?\s*[x×*]\s*" + _NUM + r"\s*" + _LEN_UNIT + r"?\s*[x×*]\s*"
    + _NUM + r"(?:\s*" + _LEN_UNIT + r")?(?![\w³²])", re.IGNORECASE)
_MEASURE_RE = re.compile(
    r"(?<![\w.,])" + _NUM + r"\s*"
    r"(mm|millimet(?:er|re)s?|cm|centimet(?:er|re)s?|m[eè]t(?:er|re)s?|mtr|m|ft|feet|foot|inch(?:es)?)"
    r"(?![\w³²])", re.IGNORECASE)
_DIMENSION_KEYWORDS = {
    "length_m": re.compile(r"\b(?:length|long|longueur|länge|laenge|lengte|lang)\b", re.IGNORECASE),
    "width_m": re.compile(r"\b(?:width|wide|largeur|large|breite|breit|breedte|breed)\b", re.IGNORECASE),
    "height_m": re.compile(r"\b(?:height|high|hauteur|haut|höhe|hoehe|hoogte|hoog|hoch)\b", re.IGNORECASE),
}
_DIMENSION_LETTERS = {
    "length_m": re.compile(r"\bL(?=\s*[:=])"),
    "width_m": re.compile(r"\b[WB](?=\s*[:=])"),
    "height_m": re.compile(r"\bH(?=\s*[:=])"),
}
_FOLLOW_GAP_RE = re.compile(
    r"^[\s:=\-]*(?:(?:of|van|de|von|ca\.?|approx\.?|approximately|environ|ongeveer|circa|~)\s*)*$",
    re.IGNORECASE)
_DIMENSION_RANGES = {"length_m": (0.3, 30.0), "width_m": (0.3, 6.0), "height_m": (0.3, 6.0)}

_WEIGHT_RE = re.compile(
    r"(?<![\w.,])(\d{1,3}(?:[.\s]\d{3})+|\d+(?:[.,]\d+)?)\s*"
    r"(kgs?|kilos?|kilograms?|kilogrammes?|kilogramm|tonnes?|tons?|t|lbs?|pounds?)(?!\w)",
    re.IGNORECASE)
_WEIGHT_KEYWORD_RE = re.compile(r"\b(?:weight|weighs|poids|p[èe]se|gewicht|wiegt|masse)\b", re.IGNORECASE)
_MILEAGE_RE = re.compile(
    r"(?<![\w.,])(\d{1,3}(?:[ .,]\d{3})+|\d+)\s*(kms?|kilomet(?:er|re)s?|miles?|mi)(?![\w/])",
    re.IGNORECASE)
_MILES_TO_KM = 1.60934

# -----------------------------
# Date and pricing patterns
# -----------------------------
_DATE_CONTEXTS = {
    "pickup_date": ("pickup", "pick-up", "pick up", "collection", "collect", "loading",
                    "enlèvement", "chargement", "abholung", "ophalen"),
    "delivery_date": ("delivery", "deliver", "discharge", "livraison", "levering", "lieferung"),
    "etd_date": ("etd", "departure", "sailing", "départ", "vertrek", "abfahrt"),
    "eta_date": ("eta", "estimated arrival", "arrival", "arrivée", "aankomst", "ankunft"),
}
_DATE_DMY_RE = re.compile(r"(?<!\d)(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4}|\d{2})(?!\d)")
_DATE_YMD_RE = re.compile(r"(?<!\d)(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})(?!\d)")
_MONTHS = {
    "jan": 1, "feb": 2, "fev": 2, "mar": 3, "mrt": 3, "apr": 4, "avr": 4, "may": 5, "mai": 5, "mei": 5,
    "jun": 6, "juin": 6, "jul": 7, "juil": 7, "aug": 8, "aou": 8, "sep": 9, "oct": 10, "okt": 10,
    "nov": 11, "dec": 12, "dez": 12,
}
_MONTH = r"((?:jan|feb|f[ée]v|m[äa]r|mrt|apr|avr|ma[iy]|mei|jun|jui|jul|aug|ao[uû]|sep|o[ck]t|nov|d[ée][cz])[^\W\d_]*)\.?"
_DATE_TEXT_RE = re.compile(r"\b" + _MONTH + r"\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b", re.IGNORECASE)
_DATE_TEXT_DMY_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th|er|\.)?\s+" + _MONTH + r"\s+(\d{4})\b", re.IGNORECASE)

_CURRENCY_MAP = {"$": "USD", "€": "EUR", "£": "GBP", "usd": "USD", "eur": "EUR", "euro": "EUR",
                 "euros": "EUR", "gbp": "GBP"}
_CURRENCY = r"(\$|€|£|(?<![^\W\d_])(?:USD|EUR|GBP|euros?)(?![^\W\d_]))"
_AMOUNT = r"(\d{1,3}(?:[ .,]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?)"
_PRICE_BEFORE_RE = re.compile(_CURRENCY + r"\s*" + _AMOUNT + r"(?![\d\w])", re.IGNORECASE)
_PRICE_AFTER_RE = re.compile(r"(?<![\w.,])" + _AMOUNT + r"\s*" + _CURRENCY, re.IGNORECASE)
INCOTERMS = ("FOB", "CIF", "CFR", "EXW", "DDP", "DAP")
_INCOTERM_RE = re.compile(r"\b(" + "|".join(INCOTERMS) + r")\b")

# -----------------------------
# Route patterns
# -----------------------------
_PLACE = r"([^\W\d_][^\n,;:()<>!?]*?)"
_END = (
    r"(?=\s*(?:[,;:()<>!?\n]|\.(?:\s|$)|$)|\s+(?:to|naar|nach|vers|à|or|of|oder|ou|and|und|et|en|"
    r"incl\w*|with|met|mit|avec|by|per|par|via|for|pour|voor|für|please|asap|contact|on|op|in|"
    r"next|this|before|until|tot)\b)"
)
# (pattern, needs at least one side in the place vocabulary)
_ROUTE_PATTERNS: List[Tuple[re.Pattern, bool]] = [
    (re.compile(r"\bfrom\s+" + _PLACE + r"\s+to\s+" + _PLACE + _END, re.IGNORECASE), False),
    (re.compile(r"\b(?:ab|von)\s+" + _PLACE + r"\s+nach\s+" + _PLACE + _END, re.IGNORECASE), False),
    (re.compile(r"\b(?:de|depuis)\s+" + _PLACE + r"\s+(?:vers|à|jusqu'à)\s+" + _PLACE + _END, re.IGNORECASE), True),
    (re.compile(r"\b(?:vanaf|van|uit)\s+" + _PLACE + r"\s+naar\s+" + _PLACE + _END, re.IGNORECASE), True),
]
_OPTION_PATTERNS = [
    re.compile(r"\bto\s+" + _PLACE + r"\s+or\s+" + _PLACE + _END, re.IGNORECASE),
    re.compile(r"\bnaar\s+" + _PLACE + r"\s+of\s+" + _PLACE + _END, re.IGNORECASE),
    re.compile(r"\bnach\s+" + _PLACE + r"\s+oder\s+" + _PLACE + _END, re.IGNORECASE),
    re.compile(r"\b(?:vers|à)\s+" + _PLACE + r"\s+ou\s+" + _PLACE + _END, re.IGNORECASE),
]
_LABELED_ORIGIN_RE = re.compile(
    r"^[ \t>]*(?:origin|pick[\s-]?up(?:\s+location)?|loading(?:\s+place)?|departure|herkomst|vertrek|"
    r"d[ée]part|enl[èe]vement|abholort|abholung)\s*:\s*([^\n]+)",
    re.IGNORECASE | re.MULTILINE)
_LABELED_DEST_RE = re.compile(
    r"^[ \t>]*(?:destination|delivery(?:\s+location)?|discharge|arrival|bestemming|levering|"
    r"arriv[ée]e|ziel|lieferort)\s*:\s*([^\n]+)",
    re.IGNORECASE | re.MULTILINE)
_POL_RE = re.compile(r"\b(?:POL|port\s+of\s+loading)\s*[:=]\s*([^\n,;]+)", re.IGNORECASE)
_POD_RE = re.compile(r"\b(?:POD|port\s+of\s+(?:discharge|destination))\s*[:=]\s*([^\n,;]+)", re.IGNORECASE)
_ARROW_GAP_RE = re.compile(r"^\s*(?:->|→|=>|>|–|—|-)\s*$")
_PORT_PREFIX_RE = re.compile(
    r"^(?:the\s+)?(?:port\s+of\s+|harbou?r\s+of\s+|le\s+port\s+d[e']\s*|port\s+d[e']\s*|haven\s+van\s+)",
    re.IGNORECASE)
_PORT_SUFFIX_RE = re.compile(r"\s+(?:port|harbou?r|haven|hafen)$", re.IGNORECASE)

_RORO_RE = re.compile(r"\b(?:ro[\s-]?ro|roll[\s-]?on[\s-]?roll[\s-]?off)\b", re.IGNORECASE)
_CONTAINER_40HC_RE = re.compile(r"\b40\s*(?:'|ft|feet|foot)?\s*(?:hc|high[\s-]?cube)\b", re.IGNORECASE)
_CONTAINER_SIZED_RE = re.compile(r"\b(20|40)\s*(?:'|ft|feet|foot|pieds)?\s*(?:container|conteneur|ctr|cntr)s?\b", re.IGNORECASE)
_CONTAINER_RE = re.compile(r"\b(?:container|conteneur)s?\b", re.IGNORECASE)


# -----------------------------
# Helpers
# -----------------------------
def _put(tree: Dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    node = tree
    for p in parents:
        node = node.setdefault(p, {})
    node[leaf] = value


def _get(tree: Mapping[str, Any], path: str) -> Any:
    node: Any = tree
    for p in path.split("."):
        if not isinstance(node, Mapping) or p not in node:
            return None
        node = node[p]
    return node


def _to_float(num: str) -> float:
    return float(num.replace(",", "."))


def _unit_factor(unit: Optional[str]) -> float:
    u = fold(unit or "m")
    if u == "mm" or u.startswith("milli"):
        return 0.001
    if u == "cm" or u.startswith("centi"):
        return 0.01
    if u in ("ft", "feet", "foot"):
        return 0.3048
    if u == "in" or u.startswith("inch"):
        return 0.0254
    return 1.0


def _in_range(dim: str, meters: float) -> bool:
    lo, hi = _DIMENSION_RANGES[dim]
    return lo <= meters <= hi


def _weight_kg(num: str, unit: str) -> float:
    unit = unit.lower()
    tons = unit.startswith("t")
    if re.fullmatch(r"\d{1,3}(?:\s\d{3})+", num) or (
            not tons and re.fullmatch(r"\d{1,3}(?:[.,]\d{3})+", num)):
        value = float(re.sub(r"[.,\s]", "", num))
    else:
        value = _to_float(num)
    if tons:
        value *= 1000
    elif unit.startswith(("lb", "pound")):
        value *= 0.453592
    return round(value, 1)


def clean_place(raw: Optional[str], contact_tokens=frozenset()) -> Optional[str]:
    """Trim a captured place, strip port wording; None when it is not place-like."""
    if not raw:
        return None
    s = re.split(r"[,;.()\n]", raw, maxsplit=1)[0]
    s = " ".join(s.split()).strip(" '\"-")
    s = _PORT_SUFFIX_RE.sub("", _PORT_PREFIX_RE.sub("", s)).strip()
    s = places.trim_place(s)
    if not s or len(s.split()) > 4:
        return None
    if not places.is_plausible_location(s, contact_tokens):
        return None
    return s


@lru_cache(maxsize=1)
def _load_nlp():
    """Load a spaCy pipeline with NER, or the blank multilingual one."""
    for name in SPACY_MODELS:
        try:
            return spacy.load(name)
        except OSError:
            continue
    logger.info("no trained spaCy pipeline installed, NER name fallback disabled")
    return spacy.blank("xx")


def get_signature_block(lines: List[str]) -> List[str]:
    """Lines after the last sign-off, else the last 10 lines."""
    for i in range(len(lines) - 1, -1, -1):
        if SIGN_OFF_REGEX.search(lines[i]):
            return lines[i + 1:]
    return lines[-10:]


def _looks_like_person(line: str) -> bool:
    words = line.split()
    if not 2 <= len(words) <= 3:
        return False
    if fold(line) in _NAME_BLOCKLIST or places.lookup(line):
        return False
    return all(_NAME_WORD_RE.match(w) and w[0].isupper() for w in words)


def _company_from_line(line: str) -> Optional[str]:
    words = line.split()
    if not words or len(words) > 6 or "@" in line:
        return None
    tokens = [re.sub(r"[^\w]", "", t) for t in fold(line).replace(".", "").split()]
    if any(t in _COMPANY_SUFFIXES for t in tokens[1:]):
        return " ".join(words)
    return None


# -----------------------------
# Vehicle matching
# -----------------------------
@dataclass(frozen=True)
class VehicleMatch:
    brand: str
    model: Optional[str]
    spec: Optional[VehicleSpec]
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


def match_vehicle(text: str) -> Optional[VehicleMatch]:
    """Longest make+model dictionary match; the model is returned as written."""
    folded = fold(text)
    best: Optional[VehicleMatch] = None

    def offer(candidate: VehicleMatch) -> None:
        nonlocal best
        if best is None or candidate.length > best.length or (
                candidate.length == best.length and candidate.start < best.start):
            best = candidate

    for alias, brand in vehicle_reference.brand_aliases():
        for m in re.finditer(r"(?<!\w)" + re.escape(alias) + r"(?!\w)", folded):
            for model_alias, spec in vehicle_reference.model_aliases(brand):
                mm = re.compile(r"[\s\-]*(" + re.escape(model_alias) + r")(?!\w)").match(folded, m.end())
                if mm:
                    offer(VehicleMatch(brand, text[mm.start(1):mm.end(1)], spec, m.start(), mm.end(1)))
                    break
            else:
                mw = _MODEL_WORD_RE.match(folded, m.end())
                if mw and mw.group(1) not in _MODEL_STOPWORDS:
                    end = mw.end(2) if mw.group(2) else mw.end(1)
                    model = text[mw.start(1):end]
                    offer(VehicleMatch(brand, model, vehicle_reference.find(brand, model), m.start(), end))
                else:
                    offer(VehicleMatch(brand, None, None, m.start(), m.end()))

    for alias, spec in vehicle_reference.standalone_aliases():
        for m in re.finditer(r"(?<!\w)" + re.escape(alias) + r"(?!\w)", folded):
            offer(VehicleMatch(spec.brand, text[m.start():m.end()], spec, m.start(), m.end()))
    return best


def _equipment_type(text: str) -> Optional[str]:
    for pattern, label in vehicle_reference.EQUIPMENT_TYPES:
        if re.search(r"\b(?:" + pattern + r")s?\b", text, re.IGNORECASE):
            return label
    return None


def _vehicle_year(text: str, match: Optional[VehicleMatch]) -> Optional[int]:
    this_year = datetime.date.today().year
    m = _MODEL_YEAR_RE.search(text)
    if m and 1900 <= int(m.group(1)) <= this_year + 1:
        return int(m.group(1))
    folded = fold(text)
    for ym in _YEAR_RE.finditer(text):
        year = int(ym.group(1))
        if not 1900 <= year <= this_year + 1:
            continue
        if match is not None and (abs(ym.end() - match.start) <= 3 or abs(ym.start() - match.end) <= 3):
            return year
        context = folded[max(0, ym.start() - 40):ym.end() + 40]
        if any(k in context for k in _YEAR_CONTEXT):
            return year
    return None


def _standard_condition(word: str) -> str:
    w = fold(word)
    if w.startswith(("brand", "neuf", "neuve", "nieuw", "neuwagen")):
        return "new"
    if w.startswith(("damage", "accident", "salvage", "non", "beschad")):
        return "damaged"
    return "used"


# -----------------------------
# Dimensions
# -----------------------------
def extract_dimensions(text: str, window: int = 40) -> Dict[str, float]:
    """length_m/width_m/height_m from an "L x W x H" triplet or keyword-anchored values."""
    for m in _TRIPLET_RE.finditer(text):
        nums = [_to_float(m.group(i)) for i in (1, 3, 5)]
        units = [u for u in (m.group(2), m.group(4), m.group(6)) if u]
        candidates = [units[-1]] if units else ["m", "cm", "mm"]
        for unit in candidates:
            factor = _unit_factor(unit)
            dims = dict(zip(("length_m", "width_m", "height_m"), (round(n * factor, 3) for n in nums)))
            if all(_in_range(k, v) for k, v in dims.items()):
                return dims

    hits = [(m.start(), m.end(), round(_to_float(m.group(1)) * _unit_factor(m.group(2)), 3))
            for m in _MEASURE_RE.finditer(text)]
    if not hits:
        return {}
    keywords: List[Tuple[int, int, str]] = []
    for dim in _DIMENSION_KEYWORDS:
        for rx in (_DIMENSION_KEYWORDS[dim], _DIMENSION_LETTERS[dim]):
            keywords.extend((k.start(), k.end(), dim) for k in rx.finditer(text))
    keywords.sort()

    used = set()
    dims: Dict[str, float] = {}
    for k_start, k_end, dim in keywords:
        if dim in dims:
            continue
        preceding = [h for h in hits if h[1] <= k_start and h not in used
                     and k_start - h[1] <= window and not text[h[1]:k_start].strip()]
        following = [h for h in hits if h[0] >= k_end and h not in used
                     and h[0] - k_end <= window and _FOLLOW_GAP_RE.match(text[k_end:h[0]])]
        # nearest preceding value wins a tie
        pick = max(preceding, key=lambda h: h[1]) if preceding else (
            min(following, key=lambda h: h[0]) if following else None)
        if pick is not None and _in_range(dim, pick[2]):
            used.add(pick)
            dims[dim] = pick[2]
    return dims


def extract_weight(text: str, window: int = 40) -> Optional[float]:
    hits = [(m.start(), _weight_kg(m.group(1), m.group(2))) for m in _WEIGHT_RE.finditer(text)]
    hits = [(pos, kg) for pos, kg in hits if 0 < kg < 200000]
    if not hits:
        return None
    for k in _WEIGHT_KEYWORD_RE.finditer(text):
        near = [kg for pos, kg in hits if 0 <= pos - k.end() <= window]
        if near:
            return near[0]
    return hits[0][1]


def extract_mileage(text: str) -> Optional[int]:
    """Odometer reading in km; miles are converted."""
    for m in _MILEAGE_RE.finditer(text):
        value = int(re.sub(r"[ .,]", "", m.group(1)))
        if m.group(2).lower().startswith("mi"):
            value = round(value * _MILES_TO_KM)
        if 0 < value <= 2000000:
            return value
    return None


# -----------------------------
# Dates and pricing
# -----------------------------
_DATE_CONTEXT_RES = {
    key: re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE)
    for key, keywords in _DATE_CONTEXTS.items()
}


def _month_number(word: str) -> Optional[int]:
    w = fold(word)
    return _MONTHS.get(w[:4]) or _MONTHS.get(w[:3])


def _make_date(year: int, month: Optional[int], day: int) -> Optional[datetime.date]:
    if month is None:
        return None
    if year < 100:
        year += 2000
    try:
        return datetime.date(year, month, day)
    except ValueError:
        return None


def parse_date(text: str) -> Optional[datetime.date]:
    """First valid date in the text; numeric dates are read day first."""
    found: List[Tuple[int, datetime.date]] = []
    readers = (
        (_DATE_YMD_RE, lambda m: (int(m.group(1)), int(m.group(2)), int(m.group(3)))),
        (_DATE_DMY_RE, lambda m: (int(m.group(3)), int(m.group(2)), int(m.group(1)))),
        (_DATE_TEXT_RE, lambda m: (int(m.group(3)), _month_number(m.group(1)), int(m.group(2)))),
        (_DATE_TEXT_DMY_RE, lambda m: (int(m.group(3)), _month_number(m.group(2)), int(m.group(1)))),
    )
    for rx, read in readers:
        for m in rx.finditer(text):
            date = _make_date(*read(m))
            if date is not None:
                found.append((m.start(), date))
                break
    return min(found)[1] if found else None


def extract_dates(text: str, window: int = 50) -> Dict[str, datetime.date]:
    """pickup/delivery/etd/eta dates written shortly after their keyword on the same line."""
    dates: Dict[str, datetime.date] = {}
    for key, rx in _DATE_CONTEXT_RES.items():
        for m in rx.finditer(text):
            date = parse_date(text[m.end():m.end() + window].split("\n", 1)[0])
            if date is not None:
                dates[key] = date
                break
    return dates


def _amount(num: str) -> float:
    s = num.replace(" ", "")
    if re.fullmatch(r"\d{1,3}(?:[.,]\d{3})+", s):
        return float(re.sub(r"[.,]", "", s))
    m = re.fullmatch(r"(\d{1,3}(?:[.,]\d{3})*|\d+)[.,](\d{1,2})", s)
    if m:
        return float(re.sub(r"[.,]", "", m.group(1)) + "." + m.group(2))
    return float(s)


def extract_pricing(text: str) -> Dict[str, Any]:
    """amount/currency of the first priced figure, plus the incoterm."""
    pricing: Dict[str, Any] = {}
    m = _PRICE_BEFORE_RE.search(text)
    if m:
        currency, amount = m.group(1), m.group(2)
    else:
        m = _PRICE_AFTER_RE.search(text)
        amount, currency = (m.group(1), m.group(2)) if m else (None, None)
    if amount:
        pricing["amount"] = _amount(amount)
        pricing["currency"] = _CURRENCY_MAP[currency.lower()]
    m = _INCOTERM_RE.search(text)
    if m:
        pricing["incoterm"] = m.group(1)
    return pricing


# -----------------------------
# Route
# -----------------------------
def extract_route(text: str, contact_tokens=frozenset()) -> Dict[str, Any]:
    """origin/destination/destination_options/ports from keyword-anchored phrases."""
    route: Dict[str, Any] = {}

    for rx, strict in _ROUTE_PATTERNS:
        for m in rx.finditer(text):
            origin = clean_place(m.group(1), contact_tokens)
            destination = clean_place(m.group(2), contact_tokens)
            if not origin or not destination:
                continue
            if strict and not (places.lookup(origin) or places.lookup(destination)):
                continue
            route["origin"], route["destination"] = origin, destination
            break
        if route:
            break

    for rx in _OPTION_PATTERNS:
        m = rx.search(text)
        if not m:
            continue
        options = [p for p in (clean_place(m.group(1), contact_tokens), clean_place(m.group(2), contact_tokens)) if p]
        if len(options) == 2:
            route["destination"] = options[0]
            route["destination_options"] = options
            break

    if "origin" not in route:
        m = _LABELED_ORIGIN_RE.search(text)
        origin = clean_place(m.group(1), contact_tokens) if m else None
        if origin:
            route["origin"] = origin
    if "destination" not in route:
        m = _LABELED_DEST_RE.search(text)
        destination = clean_place(m.group(1), contact_tokens) if m else None
        if destination:
            route["destination"] = destination

    for key, rx in (("origin_port", _POL_RE), ("destination_port", _POD_RE)):
        m = rx.search(text)
        port = clean_place(m.group(1)) if m else None
        if port:
            route[key] = port

    if "origin" not in route or "destination" not in route:
        known = [h for h in places.find_all(text) if h[2] and fold(h[2]) not in contact_tokens]
        # "Antwerp -> Lagos"
        for (p1, _, w1), (p2, _, w2) in zip(known, known[1:]):
            if _ARROW_GAP_RE.match(text[p1 + len(w1):p2]):
                route.setdefault("origin", w1)
                route.setdefault("destination", w2)
                break
        if "origin" not in route and "destination" not in route:
            distinct = []
            for _, name, written in known:
                if name not in [n for n, _ in distinct]:
                    distinct.append((name, written))
            if len(distinct) >= 2:
                route["origin"], route["destination"] = distinct[0][1], distinct[1][1]
    return route


def _shipping_type(text: str) -> Dict[str, str]:
    if _RORO_RE.search(text):
        return {"shipping_type": "roro"}
    if _CONTAINER_40HC_RE.search(text):
        return {"shipping_type": "container", "container_size": "40hc"}
    m = _CONTAINER_SIZED_RE.search(text)
    if m:
        return {"shipping_type": "container", "container_size": f"{m.group(1)}ft"}
    if _CONTAINER_RE.search(text):
        return {"shipping_type": "container"}
    return {}


def cargo_description(vehicle: Mapping[str, Any]) -> Optional[str]:
    label = " ".join(str(v) for v in (vehicle.get("year"), vehicle.get("brand"), vehicle.get("model")) if v)
    label = label or vehicle.get("type")
    if not label:
        return None
    if vehicle.get("condition"):
        label = f"{vehicle['condition'].capitalize()} {label}"
    dims = vehicle.get("dimensions") or {}
    if all(dims.get(k) for k in ("length_m", "width_m", "height_m")):
        label += f" ({dims['length_m']:g} x {dims['width_m']:g} x {dims['height_m']:g} m)"
    return label


# usable interior of a dry container: length, width, height (m), payload (kg), volume (m3)
CONTAINER_LIMITS = (
    ("20ft", 5.898, 2.352, 2.393, 20000, 28.0),
    ("40ft", 12.032, 2.352, 2.393, 26000, 58.0),
)


def derived_vehicle_fields(vehicle: Mapping[str, Any]) -> Dict[str, Any]:
    """Volume, weight class and the smallest container that takes the vehicle, else roro."""
    out: Dict[str, Any] = {}
    dims = vehicle.get("dimensions") or {}
    length, width, height = (dims.get(k) for k in ("length_m", "width_m", "height_m"))
    weight = vehicle.get("weight_kg")
    if length and width and height:
        out["calculated_volume_m3"] = round(length * width * height, 2)
    if weight:
        out["shipping_weight_class"] = "light" if weight < 1000 else "medium" if weight < 2000 else "heavy"
    if "calculated_volume_m3" in out and weight:
        volume = out["calculated_volume_m3"]
        out["recommended_container"] = next(
            (name for name, max_l, max_w, max_h, payload, capacity in CONTAINER_LIMITS
             if length <= max_l and width <= max_w and height <= max_h
             and weight <= payload and volume <= capacity),
            "roro")
    return out


# -----------------------------
# Strategy
# -----------------------------
class PatternExtractionStrategy:
    name = STRATEGY_NAME

    def __init__(self, config: Optional[PatternConfig] = None, use_ner: bool = True):
        self.config = config or PatternConfig()
        self.use_ner = use_ner

    def supports(self, document: Document) -> bool:
        return bool(document.text and document.text.strip())

    def extract(self, source, headers: Optional[Mapping[str, str]] = None) -> ExtractionResult:
        """Extract from a Document or plain text; header hints are optional."""
        if isinstance(source, Document):
            text, headers = source.text, source.headers
        else:
            text = source or ""
        headers = headers or {}

        data: Dict[str, Any] = {}
        sources: Dict[str, str] = {}
        groups: Dict[str, bool] = {}
        errors: Dict[str, str] = {}
        state: Dict[str, Any] = {"contact_tokens": frozenset(), "vehicle_match": None}

        steps = (("contact", self._contact_group), ("vehicle", self._vehicle_group),
                 ("dimensions", self._dimensions_group), ("route", self._route_group),
                 ("dates", self._dates_group), ("pricing", self._pricing_group))
        for group, step in steps:
            try:
                found = step(text, headers, state)
            except Exception as e:  # groups fail independently
                logger.warning("pattern group %s failed: %s", group, e)
                errors[group] = str(e)
                groups[group] = False
                continue
            groups[group] = bool(found)
            for path, (value, origin) in found.items():
                _put(data, path, value)
                sources[path] = origin

        spec = state.get("reference")
        if spec is not None:
            for path, value in spec.reference_fields().items():
                if value is not None and _get(data, path) is None:
                    _put(data, path, value)
                    sources[path] = "reference"

        if data.get("vehicle"):
            for key, value in derived_vehicle_fields(data["vehicle"]).items():
                _put(data, f"vehicle.{key}", value)
                sources[f"vehicle.{key}"] = "derived"
            description = cargo_description(data["vehicle"])
            if description:
                _put(data, "shipment.cargo_description", description)
                sources["shipment.cargo_description"] = "derived"

        metadata = {
            "extraction_method": "pattern_matching",
            "groups": groups,
            "field_sources": sources,
        }
        if spec is not None:
            metadata["reference_vehicle"] = f"{spec.brand} {spec.model}"
        if errors:
            metadata["group_errors"] = errors

        if not sources:
            return ExtractionResult.failure(self.name, "no fields extracted", metadata)
        confidence = round(sum(groups[g] for g in CORE_GROUPS) / len(CORE_GROUPS), 2)
        logger.debug("pattern extraction: groups=%s confidence=%.2f", groups, confidence)
        return ExtractionResult(self.name, True, data, confidence, metadata)

    # -- groups; each returns {path: (value, source)} --

    def _contact_group(self, text: str, headers: Mapping[str, str], state: dict) -> Dict[str, Tuple[Any, str]]:
        found: Dict[str, Tuple[Any, str]] = {}
        own = self.config.own_domains

        name, addr = parseaddr(headers.get("from") or "")
        if addr and "@" in addr and email_domain(addr) not in own:
            found["contact.email"] = (addr.strip(), "header")
            if name and "@" not in name:
                found["contact.name"] = (" ".join(name.strip(" '\"").split()), "header")

        for m in _ANGLE_EMAIL_RE.finditer(text):
            if email_domain(m.group(1)) in own:
                continue
            found.setdefault("contact.email", (m.group(1), "text"))
            text_name = self._name_before(text, m.start())
            if text_name:
                found.setdefault("contact.name", (text_name, "text"))
            break

        if "contact.email" not in found:
            for m in EMAIL_RE.finditer(text):
                if email_domain(m.group(0)) not in own:
                    found["contact.email"] = (m.group(0), "text")
                    break

        m = _PHONE_LABELED_RE.search(text) or _PHONE_INTL_RE.search(text)
        phone = normalize_phone(m.group(1)) if m else None
        if phone:
            found["contact.phone"] = (phone, "text")

        lines = [ln.strip() for ln in text.splitlines()]
        signature = [ln for ln in get_signature_block(lines) if ln]

        if "contact.name" not in found:
            m = _NAME_PHRASE_RE.search(text)
            if m and fold(m.group(1)) not in _NAME_BLOCKLIST:
                found["contact.name"] = (m.group(1), "text")
        if "contact.name" not in found:
            for line in signature[:3]:
                if _looks_like_person(line):
                    found["contact.name"] = (line, "text")
                    break
        if "contact.name" not in found and self.use_ner and signature:
            ner_name = self._ner_name("\n".join(signature))
            if ner_name:
                found["contact.name"] = (ner_name, "text")

        company = next((c for c in map(_company_from_line, signature) if c), None)
        if company:
            found["contact.company"] = (company, "text")
        elif "contact.email" in found:
            domain = email_domain(found["contact.email"][0])
            if domain and domain not in self.config.generic_domains and domain not in own:
                found["contact.company"] = (domain.split(".")[0].replace("-", " ").title(), "text")

        if "contact.name" in found:
            state["contact_tokens"] = places.name_tokens(found["contact.name"][0])
        return found

    @staticmethod
    def _name_before(text: str, pos: int) -> Optional[str]:
        picked: List[str] = []
        for word in reversed(text[max(0, pos - 80):pos].split()):
            word = word.strip("\"'")
            if not word or not _NAME_WORD_RE.match(word) or not word[0].isupper():
                break
            picked.append(word)
            if len(picked) == 3:
                break
        return " ".join(reversed(picked)) or None

    @staticmethod
    def _ner_name(block: str) -> Optional[str]:
        doc = _load_nlp()(block)
        for ent in doc.ents:
            if ent.label_ in ("PER", "PERSON") and _looks_like_person(ent.text.strip()):
                return ent.text.strip()
        return None

    def _vehicle_group(self, text: str, headers: Mapping[str, str], state: dict) -> Dict[str, Tuple[Any, str]]:
        found: Dict[str, Tuple[Any, str]] = {}
        match = match_vehicle(text)
        state["vehicle_match"] = match
        if match is not None:
            found["vehicle.brand"] = (match.brand, "text")
            if match.model:
                found["vehicle.model"] = (match.model, "text")
            state["reference"] = match.spec
        equipment = _equipment_type(text)
        if equipment:
            found["vehicle.type"] = (equipment, "text")

        m = _VIN_RE.search(text)
        if m:
            found["vehicle.vin"] = (m.group(0).upper(), "text")
        year = _vehicle_year(text, match)
        if year:
            found["vehicle.year"] = (year, "text")
        m = _ENGINE_RE.search(text)
        if m:
            found["vehicle.engine_cc"] = (int(m.group(1)), "text")
        m = _FUEL_RE.search(text)
        if m:
            word = m.group(1).lower()
            found["vehicle.fuel_type"] = (_FUEL_MAP.get(word, word), "text")
        m = _TRANSMISSION_RE.search(text)
        if m:
            word = fold(m.group(1))
            found["vehicle.transmission"] = ("cvt" if word == "cvt" else
                                             "automatic" if word.startswith("autom") else "manual", "text")
        m = _COLOR_RE.search(text)
        if m:
            found["vehicle.color"] = (_COLOR_MAP[m.group(1).lower()], "text")
        mileage = extract_mileage(text)
        if mileage:
            found["vehicle.mileage_km"] = (mileage, "text")

        identified = any(k in found for k in ("vehicle.brand", "vehicle.type", "vehicle.vin"))
        m = _CONDITION_RE.search(text)
        if m:
            found["vehicle.condition"] = (_standard_condition(m.group(1)), "text")
        elif identified:
            found["vehicle.condition"] = ("used", "default")
        return found

    def _dimensions_group(self, text: str, headers: Mapping[str, str], state: dict) -> Dict[str, Tuple[Any, str]]:
        window = self.config.context_window
        found = {f"vehicle.dimensions.{k}": (v, "text") for k, v in extract_dimensions(text, window).items()}
        weight = extract_weight(text, window)
        if weight:
            found["vehicle.weight_kg"] = (weight, "text")
        return found

    def _route_group(self, text: str, headers: Mapping[str, str], state: dict) -> Dict[str, Tuple[Any, str]]:
        route = extract_route(text, state.get("contact_tokens") or frozenset())
        route.update(_shipping_type(text))
        return {f"shipment.{k}": (v, "text") for k, v in route.items()}

    def _dates_group(self, text: str, headers: Mapping[str, str], state: dict) -> Dict[str, Tuple[Any, str]]:
        return {f"dates.{k}": (v, "text") for k, v in extract_dates(text).items()}

    def _pricing_group(self, text: str, headers: Mapping[str, str], state: dict) -> Dict[str, Tuple[Any, str]]:
        return {f"pricing.{k}": (v, "text") for k, v in extract_pricing(text).items()}
