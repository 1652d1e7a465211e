"""
Email content extracted by the observer, and its fingerprint.

The fingerprint is the cache key and the deduplication key: two emails with
equal normalized field tuples always share a fingerprint.
"""

import hashlib
import json
import re

from pydantic import BaseModel, ConfigDict, Field


_WHITESPACE_RE = re.compile(r"\s+")


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


class EmailContent(BaseModel):
    """Fields scraped from one rendered email."""

    model_config = ConfigDict(frozen=True)

    subject: str = Field(default="", description="Subject line")
    body: str = Field(default="", description="Plain-text body")
    sender: str = Field(default="", description="Sender address")
    urls: list[str] = Field(default_factory=list, description="Link targets found in the body")

    def normalized(self) -> tuple[str, str, str, tuple[str, ...]]:
        """
        Normalized field tuple used for fingerprinting.

        - subject/body: whitespace runs collapsed, stripped
        - sender: stripped, lower-cased
        - urls: stripped, empties dropped, order preserved
        """
        urls = tuple(u.strip() for u in self.urls if u and u.strip())
        return (
            _collapse(self.subject),
            _collapse(self.body),
            self.sender.strip().lower(),
            urls,
        )

    def fingerprint(self) -> str:
        """SHA-256 hex digest of the canonical JSON encoding of normalized()."""
        subject, body, sender, urls = self.normalized()
        canonical = json.dumps(
            [subject, body, sender, list(urls)],
            ensure_ascii=False,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
