"""
External identifier validation for the profile provider.

The provider's user ids are opaque strings of letters, digits, hyphens and
underscores. Our own primary keys are UUIDs and must never be sent upstream:
a request with one of them fails on the provider side but still burns credits.

Works offline - no API calls required. Must run before any network call.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating an external id."""

    valid: bool
    value: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class ResolvedId:
    """An external id picked from several candidate sources."""

    user_id: str
    source: str


class ExternalIdValidator:
    """
    Regex-based provider user id validation.

    Single source of truth for the id rules used by the orchestrator,
    the CLI and the API routes.
    """

    MIN_LENGTH = 5
    MAX_LENGTH = 50

    # Internal record ids: 8-4-4-4-12 hex
    UUID_RE = re.compile(
        r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
        re.IGNORECASE,
    )
    ALLOWED_RE = re.compile(r"^[A-Za-z0-9_-]+$")

    # instagram.com/p/<code>/ or instagram.com/reel/<code>/
    SHORTCODE_RE = re.compile(r"instagram\.com/(?:p|reel)/([A-Za-z0-9_-]+)")

    @classmethod
    def validate(cls, value: Optional[str]) -> ValidationResult:
        """
        Validate an external user id.

        Rules, in order: not empty, not an internal UUID, length within
        [5, 50], only letters/digits/hyphen/underscore.

        Args:
            value: Candidate id

        Returns:
            ValidationResult with the cleaned value or the rejection reason
        """
        if value is None or not isinstance(value, str) or not value.strip():
            return ValidationResult(False, reason="empty identifier")

        candidate = value.strip()

        if cls.UUID_RE.match(candidate):
            return ValidationResult(
                False, reason="looks like an internal UUID, not a provider id"
            )

        if not cls.MIN_LENGTH <= len(candidate) <= cls.MAX_LENGTH:
            return ValidationResult(
                False,
                reason=f"length {len(candidate)} outside [{cls.MIN_LENGTH}, {cls.MAX_LENGTH}]",
            )

        if not cls.ALLOWED_RE.match(candidate):
            return ValidationResult(False, reason="contains disallowed characters")

        return ValidationResult(True, value=candidate)

    @classmethod
    def is_valid(cls, value: Optional[str]) -> bool:
        return cls.validate(value).valid

    @classmethod
    def resolve_external_id(
        cls, candidates: Iterable[Tuple[Optional[str], str]]
    ) -> Optional[ResolvedId]:
        """
        Pick the first valid id from candidates in priority order.

        Args:
            candidates: (value, source_name) pairs, highest priority first
                (e.g. request payload, platform-specific stored id, legacy id)

        Returns:
            ResolvedId or None if no candidate validates
        """
        for value, source in candidates:
            if value is None:
                continue
            result = cls.validate(value)
            if result.valid:
                logger.debug(f"[Validator] Resolved external id from {source}")
                return ResolvedId(user_id=result.value, source=source)
            logger.debug(
                f"[Validator] Skipping {source} candidate {value!r}: {result.reason}"
            )
        return None

    @classmethod
    def extract_instagram_shortcode(cls, url: Optional[str]) -> Optional[str]:
        """
        Extract the post shortcode from an Instagram post or reel URL.

        Returns:
            Shortcode if found, None otherwise
        """
        if not url:
            return None
        match = cls.SHORTCODE_RE.search(url)
        return match.group(1) if match else None
