"""UnitOfWork — the transaction an event is processed in."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger("liftbus.uow")


class UnitOfWork(ABC):
    """
    Abstract base class for the transaction a consumer opens per delivery.

    The idempotency marker and every write a handler makes go through the
    same unit of work, so they are committed together or not at all.

    Post-commit hooks registered with :meth:`on_commit` run only **after**
    the commit succeeded. Downstream events emitted by a handler are
    published from such a hook, so a rolled-back handler never emits.

    Example:
        ```python
        class SessionUnitOfWork(UnitOfWork):
            def __init__(self, session):
                super().__init__()
                self._session = session

            async def commit(self):
                await self._session.commit()

            async def rollback(self):
                await self._session.rollback()
        ```
    """

    def __init__(self) -> None:
        self._on_commit_hooks: deque[Callable[[], Awaitable[Any]]] = deque()

    def on_commit(self, callback: Callable[[], Awaitable[Any]]) -> None:
        """Register an async callback to be executed after a successful commit."""
        self._on_commit_hooks.append(callback)

    async def trigger_commit_hooks(self) -> None:
        """Execute all registered on_commit hooks.

        A failing hook is logged and does not stop the remaining hooks; the
        transaction is already durable at this point.
        """
        while self._on_commit_hooks:
            callback = self._on_commit_hooks.popleft()
            try:
                await callback()
            except Exception as exc:
                logger.error("Error in on_commit hook: %s", exc, exc_info=True)

    def discard_commit_hooks(self) -> None:
        self._on_commit_hooks.clear()

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction. Must be implemented by subclasses."""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """Rollback the transaction. Must be implemented by subclasses."""
        ...

    async def __aenter__(self) -> UnitOfWork:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """
        Exit the context manager.

        1. No exception: commit(), then trigger_commit_hooks().
        2. Any exception, cancellation included: rollback() and drop the hooks.
        """
        if exc_type is None:
            await self.commit()
            await self.trigger_commit_hooks()
        else:
            self.discard_commit_hooks()
            await self.rollback()
