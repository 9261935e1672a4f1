"""Transaction scope helper.

:func:`transaction` begins a transaction on a
:class:`~chainql.execute.protocols.TransactionalExecutor`, commits when the
``with`` block exits normally and rolls back (then re-raises) when it exits
with an exception.  Nesting is not supported: an already-open
:class:`~chainql.execute.protocols.Transaction` cannot begin another one.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from chainql.errors import TransactionError
from chainql.execute.protocols import Executor, Transaction, TransactionalExecutor

logger = logging.getLogger(__name__)


@contextmanager
def transaction(executor: Executor) -> Iterator[Transaction]:
    """Run the ``with`` block inside one transaction.

    Args:
        executor: An executor exposing ``begin()``.

    Yields:
        The open transaction; it implements the executor contract.

    Raises:
        TransactionError: If ``executor`` is itself a transaction or cannot
            open one.
    """
    if isinstance(executor, Transaction):
        raise TransactionError("nested transactions are not supported")
    if not isinstance(executor, TransactionalExecutor):
        raise TransactionError(
            f"{type(executor).__name__} does not support transactions"
        )

    tx = executor.begin()
    logger.debug("transaction started")
    try:
        yield tx
    except BaseException:
        logger.debug("rolling back transaction")
        tx.rollback()
        raise
    tx.commit()
    logger.debug("transaction committed")
