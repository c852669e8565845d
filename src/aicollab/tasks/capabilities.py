"""Capability tags and subset matching."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar

_CUSTOM_PREFIX = "custom:"


class BuiltinCapability(StrEnum):
    """The fixed capability vocabulary."""

    BASIC_COMPLETION = "basic_completion"
    TEXT_GENERATION = "text_generation"
    CODE_GENERATION = "code_generation"
    CODE_COMPLETION = "code_completion"
    CODE_ANALYSIS = "code_analysis"
    TEXT_ANALYSIS = "text_analysis"
    CONVERSATIONAL = "conversational"
    CONTEXT_RETRIEVAL = "context_retrieval"
    DATA_SUMMARIZATION = "data_summarization"
    DATA_ANALYSIS = "data_analysis"
    QUESTION_ANSWERING = "question_answering"
    SUMMARIZATION = "summarization"
    TRANSLATION = "translation"
    PLANNING = "planning"
    REASONING = "reasoning"
    PROBLEM_SOLVING = "problem_solving"
    IMAGE_GENERATION = "image_generation"
    MULTIMODAL = "multimodal"


@dataclass(frozen=True, order=True)
class Capability:
    """A skill an agent offers or a task needs.

    Built-ins are created from :class:`BuiltinCapability`; anything else goes
    through :meth:`custom`. ``is_custom`` takes part in equality and hashing,
    so ``Capability.custom("code_generation")`` never equals the built-in
    ``Capability.CODE_GENERATION``.
    """

    name: str
    is_custom: bool = False

    BASIC_COMPLETION: ClassVar[Capability]
    TEXT_GENERATION: ClassVar[Capability]
    CODE_GENERATION: ClassVar[Capability]
    CODE_COMPLETION: ClassVar[Capability]
    CODE_ANALYSIS: ClassVar[Capability]
    TEXT_ANALYSIS: ClassVar[Capability]
    CONVERSATIONAL: ClassVar[Capability]
    CONTEXT_RETRIEVAL: ClassVar[Capability]
    DATA_SUMMARIZATION: ClassVar[Capability]
    DATA_ANALYSIS: ClassVar[Capability]
    QUESTION_ANSWERING: ClassVar[Capability]
    SUMMARIZATION: ClassVar[Capability]
    TRANSLATION: ClassVar[Capability]
    PLANNING: ClassVar[Capability]
    REASONING: ClassVar[Capability]
    PROBLEM_SOLVING: ClassVar[Capability]
    IMAGE_GENERATION: ClassVar[Capability]
    MULTIMODAL: ClassVar[Capability]

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Capability name must not be empty")
        if not self.is_custom and self.name not in BuiltinCapability._value2member_map_:
            raise ValueError(f"Unknown built-in capability: {self.name!r}")

    @classmethod
    def custom(cls, name: str) -> Capability:
        return cls(name=name, is_custom=True)

    @classmethod
    def parse(cls, raw: str) -> Capability:
        """Parse ``"text_analysis"`` or ``"custom:<name>"``."""
        raw = raw.strip()
        if raw.startswith(_CUSTOM_PREFIX):
            return cls.custom(raw[len(_CUSTOM_PREFIX):])
        try:
            return cls(BuiltinCapability(raw.lower().replace("-", "_")).value)
        except ValueError:
            raise ValueError(f"Unknown capability: {raw!r}") from None

    def __str__(self) -> str:
        return f"{_CUSTOM_PREFIX}{self.name}" if self.is_custom else self.name


for _builtin in BuiltinCapability:
    setattr(Capability, _builtin.name, Capability(_builtin.value))


def has_required_capabilities(
    available: Iterable[Capability], required: Iterable[Capability]
) -> bool:
    """True iff every required capability is available (set semantics)."""
    return set(required) <= set(available)


def missing_capabilities(
    available: Iterable[Capability], required: Iterable[Capability]
) -> frozenset[Capability]:
    """Return ``required - available``."""
    return frozenset(required) - frozenset(available)
