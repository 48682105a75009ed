import re
from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def slugify(value: str) -> str:
    """Lowercase, strip punctuation and join words with single hyphens."""
    slug = value.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def unique_slug(base: str, taken: set[str]) -> str:
    slug = base or "untitled"
    counter = 1
    candidate = slug
    while candidate in taken:
        candidate = f"{slug}-{counter}"
        counter += 1
    return candidate


def label_from_name(name: str) -> str:
    return " ".join(part.capitalize() for part in name.split("_") if part)
