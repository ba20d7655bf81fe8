"""Tests for core.ids"""

import uuid

from termpanes.core.ids import new_id, short_id


class TestNewId:
    """new_id"""

    def test_is_uuid(self):
        """Ids parse as uuid4"""
        assert uuid.UUID(new_id()).version == 4

    def test_unique(self):
        assert len({new_id() for _ in range(100)}) == 100


class TestShortId:
    """short_id"""

    def test_default_length(self):
        assert short_id("3eb79f67-40c3-4583-a9e4-ad8224807f34") == "3eb79f67"

    def test_custom_length(self):
        assert short_id("abcdef", length=3) == "abc"

    def test_short_input_unchanged(self):
        assert short_id("abc") == "abc"

    def test_empty(self):
        """Empty id displays as unknown"""
        assert short_id("") == "unknown"
