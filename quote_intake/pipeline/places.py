"""
Controlled vocabulary of ports and cities that show up in quote requests,
with the spellings customers actually use (FR/NL/DE/EN/AR transliterations).
"""
import re
from typing import Dict, List, Optional, Tuple

from .vehicle_reference import fold

# canonical name -> aliases (folded, lowercase)
PLACES: Dict[str, Tuple[str, ...]] = {
    "Antwerp": ("antwerp", "antwerpen", "anvers", "anversa"),
    "Brussels": ("brussels", "bruxelles", "brussel", "brüssel"),
    "Zeebrugge": ("zeebrugge", "zeebruges"),
    "Ghent": ("ghent", "gent", "gand"),
    "Liege": ("liege", "luik", "lüttich"),
    "Rotterdam": ("rotterdam",),
    "Amsterdam": ("amsterdam",),
    "Hamburg": ("hamburg", "hambourg"),
    "Bremerhaven": ("bremerhaven",),
    "Le Havre": ("le havre",),
    "Paris": ("paris",),
    "Lyon": ("lyon",),
    "Southampton": ("southampton",),
    "Valencia": ("valencia", "valence"),
    "Barcelona": ("barcelona", "barcelone"),
    "Genoa": ("genoa", "genova", "genes"),
    "Jeddah": ("jeddah", "djeddah", "djedda", "jiddah", "jedda"),
    "Dammam": ("dammam",),
    "Riyadh": ("riyadh", "riyad", "riad"),
    "Dubai": ("dubai", "dubaï"),
    "Jebel Ali": ("jebel ali",),
    "Doha": ("doha",),
    "Beirut": ("beirut", "beyrouth"),
    "Mersin": ("mersin",),
    "Alexandria": ("alexandria", "alexandrie"),
    "Casablanca": ("casablanca",),
    "Tangier": ("tangier", "tanger"),
    "Dakar": ("dakar",),
    "Conakry": ("conakry",),
    "Abidjan": ("abidjan",),
    "Tema": ("tema",),
    "Lome": ("lome", "lomé"),
    "Cotonou": ("cotonou",),
    "Lagos": ("lagos",),
    "Douala": ("douala",),
    "Pointe-Noire": ("pointe-noire", "pointe noire"),
    "Luanda": ("luanda",),
    "Mombasa": ("mombasa",),
    "Dar es Salaam": ("dar es salaam", "dar-es-salaam"),
    "Durban": ("durban",),
    "Cape Town": ("cape town", "le cap"),
    "Halifax": ("halifax",),
    "Montreal": ("montreal", "montréal"),
    "New York": ("new york",),
    "Baltimore": ("baltimore",),
}

_ALIASES: List[Tuple[str, str]] = sorted(
    ((fold(alias), name) for name, aliases in PLACES.items() for alias in aliases),
    key=lambda p: len(p[0]),
    reverse=True,
)


def lookup(text: Optional[str]) -> Optional[str]:
    """Canonical place for an exact (folded) name, else None."""
    key = " ".join(fold(text or "").split())
    for alias, name in _ALIASES:
        if alias == key:
            return name
    return None


def find_all(text: str) -> List[Tuple[int, str, str]]:
    """Known places in order of appearance: (offset, canonical, as written)."""
    folded = fold(text)
    taken = [False] * len(text)
    hits: List[Tuple[int, str, str]] = []
    for alias, name in _ALIASES:
        for m in re.finditer(r"\b" + re.escape(alias) + r"\b", folded):
            if any(taken[m.start():m.end()]):
                continue
            for i in range(m.start(), m.end()):
                taken[i] = True
            hits.append((m.start(), name, text[m.start():m.end()]))
    hits.sort()
    return hits


# words that end up in route captures but are never places
LOCATION_STOPWORDS = frozenset({
    "bonjour", "cordialement", "salutations", "merci", "client", "madame", "monsieur",
    "hello", "hi", "regards", "thank", "thanks", "dear", "sir", "madam", "mister", "miss",
    "de", "le", "la", "les", "du", "des", "et", "ou", "pour", "avec", "vers", "sur",
    "from", "to", "the", "and", "or", "for", "with", "towards", "on", "at", "in",
    "my", "our", "your", "a", "an", "un", "une", "mon", "ma", "notre",
    "van", "naar", "het", "een", "mijn", "ab", "nach", "der", "die", "das", "mein",
    "here", "there", "home", "you", "me", "us", "it", "this", "that",
})


# adverbs and courtesies that trail a place at the end of a sentence
TRAILING_WORDS = frozenset({
    "tomorrow", "today", "tonight", "soon", "now", "asap", "urgent", "urgently", "immediately",
    "please", "pls", "plz", "thanks", "thx", "cheers", "ok", "too", "also", "again",
    "demain", "aujourd'hui", "svp", "stp", "urgence", "merci", "aussi",
    "morgen", "heute", "bitte", "danke", "dringend", "sofort",
    "graag", "aub", "bedankt", "dank", "vandaag", "spoed",
})


def trim_place(capture: str) -> str:
    """Cut a captured phrase down to the place it names.

    A phrase opening with a known place becomes that place as written;
    otherwise trailing courtesy words and stopwords are dropped.
    """
    hits = find_all(capture)
    if hits and hits[0][0] == 0:
        return hits[0][2]
    words = capture.split()
    while words and fold(words[-1]).strip(".!") in TRAILING_WORDS | LOCATION_STOPWORDS:
        words.pop()
    return " ".join(words)


def name_tokens(name: Optional[str]) -> frozenset:
    """Folded tokens of a person name, plus the full folded name."""
    folded = " ".join(fold(name or "").split())
    if not folded:
        return frozenset()
    return frozenset([folded, *(t for t in re.split(r"[\s\-']+", folded) if len(t) >= 2)])


def is_plausible_location(value, contact_tokens=frozenset()) -> bool:
    if not isinstance(value, str):
        return False
    s = " ".join(value.split())
    sl = fold(s)
    if "@" in s or s.isdigit() or len(sl) < 2:
        return False
    if sl in contact_tokens:
        return False
    if lookup(s):
        return True
    return sl not in LOCATION_STOPWORDS and sl.split()[0] not in LOCATION_STOPWORDS
