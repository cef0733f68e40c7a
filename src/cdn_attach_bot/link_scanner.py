"""Find CDN links in message text and classify them by host and extension."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit

# Any http(s) URL. Stops at whitespace and angle brackets (Discord's
# embed-suppression syntax) and never ends on sentence punctuation.
ANY_URL_PATTERN = re.compile(
    r"https?://[^\s<>\"'`]*[^\s<>\"'`.,;:!?)\]}]",
    re.IGNORECASE,
)


class LinkState(enum.Enum):
    """Progress of one candidate link through a pipeline run."""

    DETECTED = "detected"
    ALLOWED = "allowed"
    REJECTED = "rejected"
    SIZE_PROBED = "size_probed"
    FETCHED = "fetched"
    STAGED = "staged"
    VERIFIED = "verified"
    INCLUDED = "included"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class CandidateLink:
    """A URL occurrence inside a message, not yet checked against any policy."""

    raw_text: str
    url: str
    host: str
    root_domain: str
    extension: str
    start: int
    end: int


def build_domain_pattern(domains: list[str]) -> re.Pattern[str]:
    """Compile a pattern matching URLs under any of ``domains`` or their subdomains."""
    cleaned = [d.strip().lower() for d in domains if d.strip()]
    if not cleaned:
        raise ValueError("at least one domain is required")
    alternation = "|".join(re.escape(d) for d in cleaned)
    return re.compile(
        rf"https?://(?:[a-z0-9\-]+\.)*(?:{alternation})(?::\d+)?/[\w/.\-]+",
        re.IGNORECASE,
    )


def host_matches(host: str, domains: list[str]) -> bool:
    """True when ``host`` is one of ``domains`` or a subdomain of one."""
    host = host.lower()
    return any(host == d or host.endswith("." + d) for d in domains)


def root_domain_of(host: str) -> str:
    labels = [label for label in host.split(".") if label]
    return ".".join(labels[-2:])


def classify(url: str) -> tuple[str, str, str] | None:
    """Return ``(host, root_domain, extension)`` for ``url``, or None if it has no host."""
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.rstrip(".")
    extension = PurePosixPath(unquote(parts.path)).suffix.lower()
    return host, root_domain_of(host), extension


def scan(text: str, pattern: re.Pattern[str]) -> list[CandidateLink]:
    """Return every match of ``pattern`` in ``text``, left to right.

    Repeated URLs are returned once per occurrence; each carries its own span.
    """
    links: list[CandidateLink] = []
    for match in pattern.finditer(text):
        raw = match.group(0)
        parsed = classify(raw)
        if parsed is None:
            continue
        host, root, extension = parsed
        links.append(
            CandidateLink(
                raw_text=raw,
                url=raw,
                host=host,
                root_domain=root,
                extension=extension,
                start=match.start(),
                end=match.end(),
            )
        )
    return links
