"""InMemoryUnitOfWork — transactional staging for unit tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...ports.unit_of_work import UnitOfWork

if TYPE_CHECKING:
    from collections.abc import Callable


class InMemoryUnitOfWork(UnitOfWork):
    """In-memory implementation of UnitOfWork for testing.

    Writes are *staged* with :meth:`stage` and only applied on commit, which
    gives tests the same all-or-nothing behaviour as a database transaction.
    Records commit/rollback calls for assertions.
    """

    def __init__(self) -> None:
        super().__init__()
        self.committed: bool = False
        self.rolled_back: bool = False
        self.commit_count: int = 0
        self.rollback_count: int = 0
        self._staged: list[tuple[Callable[[], None], Callable[[], None] | None]] = []

    def stage(
        self,
        apply: Callable[[], None],
        discard: Callable[[], None] | None = None,
    ) -> None:
        """Stage a write: *apply* runs on commit, *discard* on rollback."""
        self._staged.append((apply, discard))

    async def commit(self) -> None:
        """Apply staged writes and record that commit was called."""
        if self.committed or self.rolled_back:
            return
        for apply, _ in self._staged:
            apply()
        self._staged.clear()
        self.committed = True
        self.commit_count += 1

    async def rollback(self) -> None:
        """Discard staged writes and record that rollback was called."""
        if self.committed or self.rolled_back:
            return
        for _, discard in self._staged:
            if discard is not None:
                discard()
        self._staged.clear()
        self.rolled_back = True
        self.rollback_count += 1


def in_memory_unit_of_work_factory() -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork()
