"""
budget_revision/stages.py

Stage resolution.

A budget cycle is an ordered sequence of stages:
- index 0  => "Initial"
- index N  => "Revision N" (1 <= N <= MAX_REVISION)

Each stage is stored in its own table ("proposals", "proposals_rev1", ...).
The mapping stage -> ORM model lives in models.STAGE_MODELS.

IMPORTANT:
- Unknown labels raise StageResolutionError. There is no silent default.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import StageResolutionError

MAX_REVISION = 30

INITIAL_LABEL = "Initial"
REVISION_LABEL = "Revision"

_LABEL_RE = re.compile(r"^\s*revision\s+(\d+)\s*$", re.IGNORECASE)
_SLUG_RE = re.compile(r"^revision-(\d+)$")


@dataclass(frozen=True, order=True)
class Stage:
    """A stage of the budget cycle, identified by its index."""

    index: int

    def __post_init__(self):
        if not isinstance(self.index, int) or isinstance(self.index, bool):
            raise StageResolutionError(f"Stage index must be an integer, got {self.index!r}.")
        if self.index < 0 or self.index > MAX_REVISION:
            raise StageResolutionError(
                f"Stage index {self.index} is outside 0..{MAX_REVISION}."
            )

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def initial(cls) -> "Stage":
        return cls(0)

    @classmethod
    def revision(cls, number: int) -> "Stage":
        if number < 1:
            raise StageResolutionError(f"Revision number must be >= 1, got {number}.")
        return cls(number)

    @classmethod
    def parse(cls, label: str | None) -> "Stage":
        """
        Resolve a stage label ("Initial" / "Revision N").

        Raises StageResolutionError for anything else, including N out of range.
        """
        if label is None:
            raise StageResolutionError("Stage label is required.")

        text = str(label).strip()
        if text.lower() == INITIAL_LABEL.lower():
            return cls.initial()

        match = _LABEL_RE.match(text)
        if not match:
            raise StageResolutionError(f"Unknown stage label: {label!r}.")
        return cls.revision(int(match.group(1)))

    @classmethod
    def from_slug(cls, slug: str) -> "Stage":
        """Resolve the URL form: "initial" or "revision-N"."""
        text = (slug or "").strip().lower()
        if text == "initial":
            return cls.initial()
        match = _SLUG_RE.match(text)
        if not match:
            raise StageResolutionError(f"Unknown stage: {slug!r}.")
        return cls.revision(int(match.group(1)))

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------
    @property
    def is_initial(self) -> bool:
        return self.index == 0

    @property
    def label(self) -> str:
        if self.is_initial:
            return INITIAL_LABEL
        return f"{REVISION_LABEL} {self.index}"

    @property
    def slug(self) -> str:
        if self.is_initial:
            return "initial"
        return f"revision-{self.index}"

    @property
    def table_name(self) -> str:
        if self.is_initial:
            return "proposals"
        return f"proposals_rev{self.index}"

    def previous(self) -> "Stage":
        """Stage k-1. The Initial stage has no predecessor."""
        if self.is_initial:
            raise StageResolutionError("The Initial stage has no predecessor.")
        return Stage(self.index - 1)

    def __str__(self) -> str:
        return self.label


ALL_STAGES: tuple[Stage, ...] = tuple(Stage(i) for i in range(MAX_REVISION + 1))


def resolve_stage(value) -> Stage:
    """Accept a Stage, an index, a label or a URL slug."""
    if isinstance(value, Stage):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return Stage(value)
    text = str(value or "").strip()
    if "-" in text:
        return Stage.from_slug(text)
    return Stage.parse(text)
