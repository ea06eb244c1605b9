import re
from typing import Optional

EMAIL_RE = re.compile(r"\b[\w.+-]+@[\w-]+(?:\.[\w-]+)*\.[A-Za-z]{2,}\b")
_EMAIL_SHAPE_RE = re.compile(r"^[\w.+-]+@[\w-]+(?:\.[\w-]+)*\.[A-Za-z]{2,}$")


def is_valid_email(value) -> bool:
    """Shape check only: local@domain.tld, no spaces."""
    return isinstance(value, str) and bool(_EMAIL_SHAPE_RE.match(value.strip()))


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """Digits with a leading '+' for international numbers.

    "+32 (0)470 12.34.56" -> "+32470123456", "0032 470 123456" -> "+32470123456".
    National numbers ("0470 12 34 56") keep their digits without a '+'.
    Returns None when fewer than 7 or more than 15 digits remain.
    """
    if not raw:
        return None
    s = re.sub(r"\(0\)", "", str(raw).strip())
    digits = re.sub(r"\D", "", s)
    international = s.startswith("+")
    if not international and digits.startswith("00"):
        digits, international = digits[2:], True
    if not 7 <= len(digits) <= 15:
        return None
    return "+" + digits if international else digits


def email_domain(email: Optional[str]) -> str:
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().lower()
