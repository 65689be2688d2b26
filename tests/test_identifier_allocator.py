"""
Tests for short code allocation.
"""
import asyncio

import pytest

from shortlink_app.exceptions import ConflictError, ResourceExhaustedError, ValidationError
from shortlink_app.schemas.records import LinkRecord
from shortlink_app.services.identifier_allocator import IdentifierAllocator, validate_custom_alias
from shortlink_app.services.short_code_strategies import (
    RandomShortCodeStrategy,
    ShortCodeStrategy,
    URL_SAFE_ALPHABET,
)


class FixedStrategy(ShortCodeStrategy):
    """Returns the given codes in order, repeating the last one"""

    def __init__(self, *codes):
        self.codes = list(codes)
        self.calls = 0

    def generate(self) -> str:
        code = self.codes[min(self.calls, len(self.codes) - 1)]
        self.calls += 1
        return code


def add(storage, code, **extra):
    return asyncio.run(storage.add_link(LinkRecord(original_url="https://example.com", short_code=code, **extra)))


class TestRandomStrategy:
    """Test random code generation"""

    def test_generates_correct_length(self):
        code = RandomShortCodeStrategy(length=8).generate()
        assert len(code) == 8

    def test_uses_url_safe_alphabet(self):
        strategy = RandomShortCodeStrategy()
        for _ in range(200):
            assert set(strategy.generate()) <= set(URL_SAFE_ALPHABET)

    def test_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            RandomShortCodeStrategy(length=0)


class TestAliasValidation:
    """Test custom alias rules"""

    @pytest.mark.parametrize("alias", ["promo", "Summer_Sale-2025", "abc", "a" * 50])
    def test_accepts_valid_aliases(self, alias):
        assert validate_custom_alias(alias) == alias

    @pytest.mark.parametrize("alias", ["ab", "a" * 51, "has space", "slash/es", "émoji", ""])
    def test_rejects_invalid_aliases(self, alias):
        with pytest.raises(ValidationError):
            validate_custom_alias(alias)


class TestAllocate:
    """Test IdentifierAllocator.allocate"""

    def test_random_code_has_eight_characters(self, memory_storage):
        code = asyncio.run(IdentifierAllocator(memory_storage).allocate())
        assert len(code) == 8

    def test_free_alias_is_returned_unchanged(self, memory_storage):
        code = asyncio.run(IdentifierAllocator(memory_storage).allocate("Promo"))
        assert code == "Promo"

    def test_taken_alias_conflicts(self, storage):
        add(storage, "promo")
        with pytest.raises(ConflictError):
            asyncio.run(IdentifierAllocator(storage).allocate("promo"))

    def test_aliases_are_case_sensitive(self, storage):
        add(storage, "promo")
        assert asyncio.run(IdentifierAllocator(storage).allocate("PROMO")) == "PROMO"

    def test_retired_code_stays_taken(self, storage):
        link = add(storage, "promo")
        asyncio.run(storage.deactivate_link(link.id))
        with pytest.raises(ConflictError):
            asyncio.run(IdentifierAllocator(storage).allocate("promo"))

    def test_collision_regenerates(self, memory_storage):
        add(memory_storage, "taken123")
        strategy = FixedStrategy("taken123", "taken123", "free1234")
        code = asyncio.run(IdentifierAllocator(memory_storage, strategy=strategy).allocate())
        assert code == "free1234"
        assert strategy.calls == 3

    def test_exhausted_budget_raises(self, memory_storage):
        add(memory_storage, "taken123")
        strategy = FixedStrategy("taken123")
        allocator = IdentifierAllocator(memory_storage, strategy=strategy, max_attempts=5)
        with pytest.raises(ResourceExhaustedError):
            asyncio.run(allocator.allocate())
        assert strategy.calls == 5

    def test_attempt_budget_has_a_floor(self, memory_storage):
        assert IdentifierAllocator(memory_storage, max_attempts=1).max_attempts == 5
