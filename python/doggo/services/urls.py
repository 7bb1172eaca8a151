"""URL detection and validation for the scrape collaborator.

- extract_urls(): http(s) URLs found in free text, trailing punctuation
  stripped, de-duplicated in first-seen order
- validate_requested_url(): strict check, raises E_INVALID_URL
- filename_from_url(): "{host}-{last path segment}.md" display name

Key behaviors:
- Scheme must be http or https
- Length must be <= 2048 characters
- Host must be present; userinfo (user:pass@host) is forbidden
"""

import re
from urllib.parse import urlparse

from doggo.errors import ApiErrorCode, InvalidRequestError

MAX_URL_LENGTH = 2048

ALLOWED_SCHEMES = {"http", "https"}

_URL_PATTERN = re.compile(r"(https?://[^\s]+)", re.IGNORECASE)
_TRAILING_PUNCTUATION = re.compile(r"[.,!?;:]+$")
_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9-]", re.IGNORECASE)

# Links to these are files, not pages
NON_SCRAPEABLE_EXTENSIONS = (
    ".pdf",
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".webp",
    ".zip",
    ".mp4",
    ".mp3",
)


def extract_urls(text: str) -> list[str]:
    seen: dict[str, None] = {}
    for match in _URL_PATTERN.findall(text or ""):
        seen.setdefault(_TRAILING_PUNCTUATION.sub("", match), None)
    return list(seen)


def is_valid_http_url(url: str) -> bool:
    try:
        validate_requested_url(url)
    except InvalidRequestError:
        return False
    return True


def extract_valid_urls(text: str) -> list[str]:
    return [url for url in extract_urls(text) if is_valid_http_url(url)]


def contains_scrapeable_urls(text: str) -> bool:
    return any(
        not url.lower().endswith(NON_SCRAPEABLE_EXTENSIONS) for url in extract_valid_urls(text)
    )


def validate_requested_url(url: str) -> None:
    """Validate a URL handed to the scrape collaborator.

    Raises:
        InvalidRequestError(E_INVALID_URL): If validation fails.
    """
    if len(url) > MAX_URL_LENGTH:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_URL,
            f"URL exceeds maximum length of {MAX_URL_LENGTH} characters",
        )

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_URL, f"Invalid URL format: {e}") from e

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_URL,
            f"Invalid URL scheme '{parsed.scheme}'. Only http and https are allowed.",
        )

    if parsed.username or parsed.password:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_URL,
            "URLs with credentials (user:pass@host) are not allowed",
        )

    if not parsed.hostname:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_URL, "URL must have a valid hostname")


def filename_from_url(url: str) -> str:
    """Readable markdown filename for a scraped page.

    Example:
        >>> filename_from_url("https://www.example.com/blog/post-1/")
        'example-com-post-1.md'
    """
    parsed = urlparse(url)
    host = (parsed.hostname or "page").removeprefix("www.")
    segment = parsed.path.rstrip("/").rsplit("/", 1)[-1] or "index"
    name = _UNSAFE_NAME_CHARS.sub("-", f"{host}-{segment}").lower()
    return f"{name}.md"
