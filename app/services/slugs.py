"""
Tenant Slug Allocation

Derives a URL-safe, unique tenant identifier from a business name.
Slugs double as subdomain labels, so they carry no separators at all:
"Frituur Nolim!!" becomes "frituurnolim", a second one "frituurnolim2".

The uniqueness check is a plain lookup (check-then-act). The database
unique constraint on tenants.slug is what finally decides; the
provisioning saga retries allocation when it loses that race.
"""

import logging
import re
import time
from typing import Callable, Optional

from app.core.exceptions import SlugAllocationExhausted
from app.repository.base import BaseTenantRepository

logger = logging.getLogger(__name__)

_NOT_SLUG_CHARS = re.compile(r"[^a-z0-9]")
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

MIN_SLUG_LENGTH = 2


def to_base36(number: int) -> str:
    """Encode a non-negative integer in lowercase base 36."""
    if number < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def normalize_slug(business_name: str) -> str:
    """Lowercase, trim and drop everything outside [a-z0-9]."""
    return _NOT_SLUG_CHARS.sub("", business_name.lower().strip())


class SlugAllocator:
    """
    Allocates free tenant slugs.

    One allocator serves one registration. It remembers every slug it has
    handed out, so a retry after a lost race never gets the same slug back.

    Args:
        repository: Store used for the "is it taken" lookups
        max_attempts: Numbered variants to try before giving up
        fallback_prefix: Prefix for names that normalize to < 2 chars
        clock_ms: Millisecond clock, injectable for tests
    """

    def __init__(
        self,
        repository: BaseTenantRepository,
        max_attempts: int = 100,
        fallback_prefix: str = "shop",
        clock_ms: Optional[Callable[[], int]] = None,
    ):
        self.repository = repository
        self.max_attempts = max_attempts
        self.fallback_prefix = fallback_prefix
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._issued: set[str] = set()

    def base_slug(self, business_name: str) -> str:
        """Normalized slug, or the timestamped fallback for degenerate names."""
        slug = normalize_slug(business_name)
        if len(slug) < MIN_SLUG_LENGTH:
            slug = f"{self.fallback_prefix}{to_base36(self._clock_ms())}"
            logger.info(f"Business name {business_name!r} too short for a slug, using {slug}")
        return slug

    async def _is_free(self, slug: str) -> bool:
        if slug in self._issued:
            return False
        return await self.repository.get_tenant_by_slug(slug) is None

    async def allocate(self, business_name: str) -> str:
        """
        Return an unused slug for ``business_name``.

        Raises:
            SlugAllocationExhausted: every numbered variant is taken
            RepositoryError: the lookup itself failed
        """
        base = self.base_slug(business_name)

        if await self._is_free(base):
            self._issued.add(base)
            return base

        for counter in range(2, self.max_attempts + 2):
            candidate = f"{base}{counter}"
            if await self._is_free(candidate):
                logger.debug(f"Slug {base} taken, allocated {candidate}")
                self._issued.add(candidate)
                return candidate

        logger.warning(f"Slug allocation exhausted for base {base!r} after {self.max_attempts} attempts")
        raise SlugAllocationExhausted(
            f"no free slug for {base!r} after {self.max_attempts} attempts",
            context={"base_slug": base},
        )
