"""Middleware that hands out transaction nonces locally for one sending address."""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from typing import Any, Optional, Protocol

__all__ = ["Middleware", "NonceManagerError", "NonceManagerMiddleware"]

logger = logging.getLogger(__name__)

_MAX_NONCE = 0xFFFFFFFFFFFFFFFF


class Middleware(Protocol):
    """The operations the nonce manager needs from the middleware it wraps."""

    async def get_transaction_count(self, address: Any, block: Any = None) -> int: ...

    async def fill_transaction(self, tx: Any, block: Any = None) -> Any: ...

    async def send_transaction(self, tx: Any, block: Any = None) -> Any: ...


class NonceManagerError(Exception):
    """Raised when the wrapped middleware fails; the original error is ``inner``."""

    def __init__(self, inner: BaseException) -> None:
        super().__init__(str(inner))
        self.inner = inner


def _checked_nonce(value: Any) -> int:
    nonce = int(value)
    if not 0 <= nonce <= _MAX_NONCE:
        raise OverflowError(f"nonce must fit in 64 unsigned bits, got {value!r}")
    return nonce


class NonceManagerMiddleware:
    """Computes nonces locally so consecutive transactions need not wait for each other.

    Transactions are objects with a ``nonce`` attribute, ``None`` when unset.
    The first time a nonce is needed it is read from the wrapped middleware as
    the transaction count of ``address``; after that it is counted up locally.
    """

    def __init__(self, inner: Middleware, address: Any) -> None:
        self.inner = inner
        self.address = address
        self._init_guard = asyncio.Lock()
        self._counter_lock = threading.Lock()
        self._initialized = False
        self._nonce = 0

    def __repr__(self) -> str:
        return (
            f"NonceManagerMiddleware(address={self.address!r}, nonce={self._nonce}, "
            f"initialized={self._initialized})"
        )

    @property
    def nonce(self) -> int:
        """The nonce the next transaction will get."""
        return self._nonce

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _store(self, nonce: Any) -> int:
        value = _checked_nonce(nonce)
        with self._counter_lock:
            self._nonce = value
        return value

    def next(self) -> int:
        """Return the nonce to use now and advance the counter."""
        with self._counter_lock:
            nonce = self._nonce
            self._nonce = (nonce + 1) & _MAX_NONCE
        return nonce

    async def _query_count(self, block: Any) -> int:
        try:
            return await self.inner.get_transaction_count(self.address, block)
        except Exception as exc:
            raise NonceManagerError(exc) from exc

    async def initialize_nonce(self, block: Any = None) -> int:
        """Read the starting nonce from the wrapped middleware once and return it.

        If the nonce is already initialized the current nonce is returned
        without asking the wrapped middleware again.
        """
        if self._initialized:
            return self._nonce
        async with self._init_guard:
            if self._initialized:
                return self._nonce
            nonce = self._store(await self._query_count(block))
            self._initialized = True
            logger.debug("Nonce initialized for address: %r", self.address)
            return nonce

    async def _get_transaction_count_with_manager(self, block: Any) -> int:
        if not self._initialized:
            self._store(await self._query_count(block))
            self._initialized = True
        return self.next()

    async def get_transaction_count(self, address: Any, block: Any = None) -> int:
        """Ask the wrapped middleware for the transaction count of ``address``."""
        try:
            return await self.inner.get_transaction_count(address, block)
        except Exception as exc:
            raise NonceManagerError(exc) from exc

    async def fill_transaction(self, tx: Any, block: Any = None) -> Any:
        """Give ``tx`` a nonce if it has none, then let the wrapped middleware fill the rest."""
        if tx.nonce is None:
            tx.nonce = await self._get_transaction_count_with_manager(block)
        try:
            return await self.inner.fill_transaction(tx, block)
        except Exception as exc:
            raise NonceManagerError(exc) from exc

    async def send_transaction(self, tx: Any, block: Any = None) -> Any:
        """Send a copy of ``tx`` with a managed nonce.

        If sending fails and the chain's transaction count no longer matches
        the local nonce, the local nonce is reset to that count and the
        transaction is sent once more with it; otherwise the failure is raised.
        """
        tx = copy.copy(tx)
        if tx.nonce is None:
            tx.nonce = await self._get_transaction_count_with_manager(block)
        try:
            return await self.inner.send_transaction(copy.copy(tx), block)
        except Exception as err:
            nonce = await self.get_transaction_count(self.address, block)
            if _checked_nonce(nonce) == self._nonce:
                raise NonceManagerError(err) from err
            self._store(nonce)
            tx.nonce = nonce
            logger.debug("Nonce reset for address: %r", self.address)
            try:
                return await self.inner.send_transaction(tx, block)
            except Exception as exc:
                raise NonceManagerError(exc) from exc