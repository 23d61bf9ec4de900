import re
from datetime import datetime, timedelta, timezone
from typing import Optional

# Matches "(S)", " (XL) " and similar abbreviation suffixes on size labels.
_PARENTHETICAL = re.compile(r"\s*\([^)]*\)\s*")
_WHITESPACE = re.compile(r"\s+")

NOT_APPLICABLE = "n/a"


def normalize_name(value: Optional[str]) -> str:
    """Lower-cases, trims and collapses internal whitespace. None becomes ''."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip().lower()


def normalize_education_level(value: Optional[str]) -> str:
    return normalize_name(value) or NOT_APPLICABLE


def strip_abbreviation(size: Optional[str]) -> str:
    """
    Reduces a size label to the part used for comparison, so that
    'Small', 'small ' and 'Small (S)' all become 'small'.
    """
    normalized = normalize_name(size)
    stripped = _PARENTHETICAL.sub(" ", normalized).strip()
    return _WHITESPACE.sub(" ", stripped) or NOT_APPLICABLE


def split_sizes(size: Optional[str]) -> list[str]:
    """Splits a legacy comma-joined size field: 'Small, Medium,' -> ['Small', 'Medium']."""
    if not size:
        return []
    return [token.strip() for token in size.split(",") if token.strip()]


def has_size_list(size: Optional[str]) -> bool:
    return bool(size) and "," in size and normalize_name(size) != NOT_APPLICABLE


def sizes_match(a: Optional[str], b: Optional[str]) -> bool:
    return strip_abbreviation(a) == strip_abbreviation(b)


def variant_key(name: Optional[str], size: Optional[str], education_level: Optional[str]) -> str:
    """Identity of a variant inside a consolidated product."""
    return "|".join(
        [
            normalize_name(name),
            strip_abbreviation(size),
            normalize_education_level(education_level),
        ]
    )


def as_utc(moment: datetime) -> datetime:
    """Naive timestamps from the backend are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sort_timestamp(moment: Optional[datetime]) -> float:
    """Sort key for creation times; records without one sort first."""
    if moment is None:
        return float("-inf")
    return as_utc(moment).timestamp()


def format_claim_date(moment: Optional[datetime]) -> str:
    if moment is None:
        return "a previous date"
    return as_utc(moment).strftime("%Y-%m-%d")


def get_date_suffix_for_filename() -> str:
    """Returns the current date as a YYYY-MM-DD string for filenames."""
    return datetime.now().strftime("%Y-%m-%d")


def remaining_validity(issued_at: datetime, now: datetime, valid_days: int) -> timedelta:
    """
    Time left before a receipt issued at `issued_at` expires. Zero means it expires
    right now and is still accepted; anything negative is expired.
    """
    return as_utc(issued_at) + timedelta(days=valid_days) - as_utc(now)
