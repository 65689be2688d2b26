"""
Short code allocation: random codes or validated custom aliases.
"""

import re
from typing import Optional

from shortlink_app.config import settings
from shortlink_app.exceptions import ConflictError, ResourceExhaustedError, ValidationError
from shortlink_app.logging_config import get_logger
from shortlink_app.services.short_code_strategies import RandomShortCodeStrategy, ShortCodeStrategy
from shortlink_app.storage.strategies import StorageStrategy

logger = get_logger(__name__)

MIN_ATTEMPTS = 5


def validate_custom_alias(
    alias: str,
    min_length: int = None,
    max_length: int = None
) -> str:
    """
    Check an alias against letters, digits, hyphen and underscore.

    Aliases are case-sensitive and returned unchanged.

    Raises:
        ValidationError: if the alias has the wrong length or characters
    """
    min_length = min_length or settings.custom_alias_min_length
    max_length = max_length or settings.custom_alias_max_length
    if not isinstance(alias, str) or not alias:
        raise ValidationError("Alias cannot be empty")
    if len(alias) < min_length:
        raise ValidationError(f"Alias must be at least {min_length} characters")
    if len(alias) > max_length:
        raise ValidationError(f"Alias must be at most {max_length} characters")
    if not re.fullmatch(r"[A-Za-z0-9_-]+", alias):
        raise ValidationError(
            "Alias can only contain letters, numbers, hyphens, and underscores"
        )
    return alias


class IdentifierAllocator:
    """
    Picks the short code for a new link.

    The availability check here only saves a doomed insert. Two requests can
    still pick the same code between check and insert; the storage
    constraint decides, and LinkDirectory reports the loser as ConflictError.
    """

    def __init__(
        self,
        storage: StorageStrategy,
        strategy: Optional[ShortCodeStrategy] = None,
        max_attempts: int = None
    ):
        self.storage = storage
        self.strategy = strategy or RandomShortCodeStrategy(length=settings.short_code_length)
        self.max_attempts = max(max_attempts or settings.max_retries, MIN_ATTEMPTS)

    async def allocate(self, custom_alias: Optional[str] = None) -> str:
        """
        Return a short code that is currently free.

        Raises:
            ValidationError: malformed alias
            ConflictError: alias already taken
            ResourceExhaustedError: no free random code within the attempt budget
        """
        if custom_alias is not None:
            alias = validate_custom_alias(custom_alias)
            if await self.storage.is_code_taken(alias):
                raise ConflictError("Custom alias is already taken")
            return alias

        for attempt in range(self.max_attempts):
            code = self.strategy.generate()
            if not await self.storage.is_code_taken(code):
                return code
            logger.info(f"Short code collision on attempt {attempt + 1}, regenerating")

        logger.error(f"Could not generate unique short code after {self.max_attempts} attempts")
        raise ResourceExhaustedError(
            f"Could not generate unique short code after {self.max_attempts} attempts"
        )
