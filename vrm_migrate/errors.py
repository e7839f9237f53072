"""Error kinds raised by the migration pipeline."""

from __future__ import annotations

from typing import Iterable, List


class MigrationError(Exception):
    pass


class MalformedInputError(MigrationError):
    """The container or its JSON cannot be parsed into a VRM 0.x model."""


class MissingRequiredFieldError(MigrationError):
    def __init__(self, field: str) -> None:
        super().__init__(f"VRM 0.x extension has no '{field}' object")
        self.field = field


class NotNormalizedError(MigrationError):
    """Node transforms carry skew that the VRM 1.0 runtime cannot represent."""

    def __init__(self, nodes: Iterable[str]) -> None:
        self.nodes: List[str] = list(nodes)
        super().__init__("model is not normalized: " + ", ".join(self.nodes))
