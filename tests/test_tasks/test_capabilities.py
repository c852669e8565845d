"""Tests for capability tags and matching."""

from __future__ import annotations

import pytest

from aicollab.tasks.capabilities import (
    BuiltinCapability,
    Capability,
    has_required_capabilities,
    missing_capabilities,
)


class TestCapability:
    def test_builtins_attached_to_class(self):
        for builtin in BuiltinCapability:
            cap = getattr(Capability, builtin.name)
            assert cap.name == builtin.value
            assert cap.is_custom is False

    def test_custom_never_equals_builtin_with_same_name(self):
        assert Capability.custom("code_generation") != Capability.CODE_GENERATION
        assert len({Capability.custom("code_generation"), Capability.CODE_GENERATION}) == 2

    def test_custom_equality_by_name(self):
        assert Capability.custom("legal_review") == Capability.custom("legal_review")
        assert Capability.custom("a") != Capability.custom("b")

    def test_unknown_builtin_rejected(self):
        with pytest.raises(ValueError):
            Capability("not_a_capability")

    def test_empty_custom_rejected(self):
        with pytest.raises(ValueError):
            Capability.custom("")

    def test_parse(self):
        assert Capability.parse("text_analysis") == Capability.TEXT_ANALYSIS
        assert Capability.parse("Text-Analysis") == Capability.TEXT_ANALYSIS
        assert Capability.parse("custom:legal") == Capability.custom("legal")
        with pytest.raises(ValueError, match="Unknown capability"):
            Capability.parse("telepathy")

    def test_str(self):
        assert str(Capability.PLANNING) == "planning"
        assert str(Capability.custom("legal")) == "custom:legal"


class TestMatching:
    def test_empty_requirement_always_matches(self):
        assert has_required_capabilities([], [])
        assert has_required_capabilities([Capability.PLANNING], [])

    def test_subset_matches(self):
        available = [Capability.TEXT_ANALYSIS, Capability.CODE_GENERATION]
        assert has_required_capabilities(available, [Capability.TEXT_ANALYSIS])
        assert has_required_capabilities(available, available)

    def test_missing_one_fails(self):
        available = [Capability.TEXT_ANALYSIS]
        required = [Capability.TEXT_ANALYSIS, Capability.CODE_GENERATION]
        assert not has_required_capabilities(available, required)
        assert missing_capabilities(available, required) == frozenset({Capability.CODE_GENERATION})

    def test_duplicates_use_set_semantics(self):
        assert has_required_capabilities(
            [Capability.REASONING], [Capability.REASONING, Capability.REASONING]
        )

    def test_custom_does_not_satisfy_builtin(self):
        assert not has_required_capabilities(
            [Capability.custom("code_generation")], [Capability.CODE_GENERATION]
        )
