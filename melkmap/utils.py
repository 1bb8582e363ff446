"""
Utility functions for logging, text processing, number parsing and distances.
"""
import hashlib
import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

EARTH_RADIUS_KM = 6371.0088
KM_PER_DEGREE = 111.32

# Persian (U+06F0..) and Arabic-Indic (U+0660..) digits
_DIGIT_TABLE = str.maketrans(
    "۰۱۲۳۴۵۶۷۸۹٠١٢٣٤٥٦٧٨٩",
    "01234567890123456789",
)


def init_logger(
    name: str = "melkmap",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_file: Optional[str] = "melkmap.log"
) -> logging.Logger:
    """Initialize logger with console and optional file handlers."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    if logger.handlers:
        return logger

    console_level_num = getattr(logging, console_level.upper(), logging.INFO)
    ch = logging.StreamHandler()
    ch.setLevel(console_level_num)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if log_file:  # Create file handler only if log_file is provided
        file_level_num = getattr(logging, file_level.upper(), logging.DEBUG)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level_num)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger


def now_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def clean_text(s: Optional[str]) -> str:
    """Clean and normalize text by removing extra whitespace."""
    if not s:
        return ""
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def to_english_digits(text: str) -> str:
    """Replace Persian and Arabic-Indic digit glyphs with ASCII digits."""
    if not text:
        return ""
    return text.translate(_DIGIT_TABLE)


def parse_leading_int(text: Optional[str]) -> Optional[int]:
    """
    Parse the first run of digits in a label such as "۸۵ متر".

    Returns None when the text carries no digits.
    """
    if not isinstance(text, str):
        return None
    m = re.search(r"\d+", to_english_digits(text))
    if not m:
        return None
    return int(m.group(0))


def parse_localized_number(text: Optional[str]) -> Optional[float]:
    """
    Parse a localized amount such as "۴۵٬۰۰۰٬۰۰۰ تومان".

    All digits are joined after dropping thousands separators; a decimal
    separator (``٫`` or ``.``) followed by digits is honoured.
    """
    if not isinstance(text, str):
        return None
    s = to_english_digits(text).replace("٫", ".")
    s = re.sub(r"[^\d.]", "", s)
    m = re.match(r"\.*(\d+(?:\.\d+)?)", s)
    if not m:
        return None
    try:
        val = float(m.group(1))
    except ValueError:
        return None
    if math.isnan(val) or math.isinf(val):
        return None
    return val


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km on a spherical earth."""
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = p2 - p1
    dl = math.radians(lng2 - lng1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def sha256_hexdigest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
