"""Domain exceptions shared by the services and the HTTP layer."""

from __future__ import annotations


class StoreError(Exception):
    """A backing store query failed (I/O, connectivity, ...)."""


class ConflictCheckUnavailable(Exception):
    """Conflict data could not be fetched, so the result cannot be trusted."""

    def __init__(self, source: str, cause: BaseException | None = None) -> None:
        super().__init__(f"Conflict data unavailable from {source}")
        self.source = source
        self.cause = cause


class FlowGraphError(ValueError):
    """A flow graph is structurally invalid."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__("; ".join(problems))
        self.problems = problems
