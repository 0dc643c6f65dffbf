"""Per-delivery transaction backed by an ``AsyncSession``."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

from liftbus_core.ports.unit_of_work import UnitOfWork

from .exceptions import SessionManagementError, UnitOfWorkError

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from sqlalchemy.ext.asyncio import AsyncSession

    AsyncSessionFactory = Callable[[], AsyncSession]


class SQLAlchemyUnitOfWork(UnitOfWork):
    """
    Opens a fresh session on enter and closes it on exit.

    The idempotency store inserts its marker through ``uow.session`` and the
    handler writes through ``ctx.uow.session``; both land in the one
    transaction this object commits or rolls back.

        factory = async_sessionmaker(engine, expire_on_commit=False)
        async with SQLAlchemyUnitOfWork(session_factory=factory) as uow:
            uow.session.add(row)
    """

    def __init__(self, session_factory: AsyncSessionFactory) -> None:
        if session_factory is None:
            raise SessionManagementError("A session_factory is required.")
        super().__init__()
        self._session_factory = session_factory
        self._session: AsyncSession | None = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise UnitOfWorkError("No open session; enter the unit of work first.")
        return self._session

    async def __aenter__(self) -> SQLAlchemyUnitOfWork:
        try:
            self._session = self._session_factory()
            if not self._session.in_transaction():
                await self._session.begin()
        except Exception as e:  # noqa: BLE001
            await self._close()
            raise SessionManagementError(f"Could not open a transaction: {e}") from e
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            await super().__aexit__(exc_type, exc_val, exc_tb)
        finally:
            await self._close()

    async def _close(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await session.close()
        except Exception as e:  # noqa: BLE001
            raise SessionManagementError(f"Could not close session: {e}") from e

    async def commit(self) -> None:
        """Commit; a failed commit is rolled back before the error propagates."""
        try:
            await self.session.commit()
        except Exception as e:  # noqa: BLE001
            with contextlib.suppress(Exception):
                await self.rollback()
            raise UnitOfWorkError(f"Commit failed: {e}") from e

    async def rollback(self) -> None:
        try:
            if self.session.in_transaction():
                await self.session.rollback()
        except Exception as e:  # noqa: BLE001
            raise UnitOfWorkError(f"Rollback failed: {e}") from e


def sqlalchemy_uow_factory(
    session_factory: AsyncSessionFactory,
) -> Callable[[], SQLAlchemyUnitOfWork]:
    """Zero-argument factory the consumer pipeline calls once per delivery."""

    def _factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory)

    return _factory
