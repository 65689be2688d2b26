"""
Short code generation strategies.
Uses Strategy Pattern to allow different generation algorithms.
"""

import secrets
import string
from abc import ABC, abstractmethod

# URL-safe alphabet (same 64 symbols as nanoid)
URL_SAFE_ALPHABET = string.ascii_letters + string.digits + "-_"


class ShortCodeStrategy(ABC):
    """Abstract base class for short code generation strategies"""

    @abstractmethod
    def generate(self) -> str:
        """
        Generate a candidate short code.

        Candidates are not guaranteed unique; the allocator checks them and
        storage enforces uniqueness on insert.
        """
        pass


class RandomShortCodeStrategy(ShortCodeStrategy):
    """
    Random fixed-length codes from a URL-safe alphabet.

    64^8 possible codes, so collisions are rare but still possible;
    the allocator retries on a taken code.
    """

    def __init__(self, length: int = 8, alphabet: str = URL_SAFE_ALPHABET):
        if length < 1:
            raise ValueError("Short code length must be positive")
        self.length = length
        self.alphabet = alphabet

    def generate(self) -> str:
        """Generate a cryptographically random code of the configured length"""
        return "".join(secrets.choice(self.alphabet) for _ in range(self.length))
