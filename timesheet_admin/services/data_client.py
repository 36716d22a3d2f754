"""
Query client over SQLAlchemy sessions.

Each call opens its own short-lived session, so independent reads may run on
separate threads. Calls never raise for database failures: the error is
logged and handed back on the QueryResult, and callers must check it before
trusting ``data``.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from fastapi import Depends
from sqlalchemy import select as sa_select, update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from timesheet_admin.database import get_session_factory

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DataClient:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    # ── reads ──

    def select(
        self,
        model,
        *,
        expand: Iterable[str] = (),
        eq: Optional[dict] = None,
        in_: Optional[dict] = None,
        gte: Optional[dict] = None,
        lte: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> QueryResult:
        """Rows of ``model`` matching every filter, with ``expand`` relationships loaded."""
        stmt = sa_select(model)
        for name in expand:
            stmt = stmt.options(joinedload(getattr(model, name)))
        stmt = stmt.where(*_conditions(model, eq=eq, in_=in_, gte=gte, lte=lte))
        if order_by:
            column = getattr(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())

        try:
            with self._session_factory() as db:
                rows = db.execute(stmt).unique().scalars().all()
        except SQLAlchemyError as e:
            logger.error("select on %s failed: %s", model.__tablename__, e)
            return QueryResult(error=str(e))
        return QueryResult(data=list(rows))

    def gather(self, *calls: Callable[[], QueryResult]) -> list[QueryResult]:
        """Issue independent calls at once and wait for all of them."""
        with ThreadPoolExecutor(max_workers=max(len(calls), 1)) as pool:
            futures = [pool.submit(call) for call in calls]
            return [f.result() for f in futures]

    # ── writes ──

    def insert(self, model, values: dict) -> QueryResult:
        """Insert one row and return it with server defaults loaded."""
        try:
            with self._session_factory() as db:
                row = model(**values)
                db.add(row)
                db.commit()
                db.refresh(row)
        except SQLAlchemyError as e:
            logger.error("insert into %s failed: %s", model.__tablename__, e)
            return QueryResult(error=str(e))
        return QueryResult(data=row)

    def update(self, model, values: dict, *, match: dict) -> QueryResult:
        """Set ``values`` on every row equal to ``match``; data is the list of updated rows.

        ``match`` goes into the UPDATE's own WHERE clause, so a row that stopped
        matching after it was read is left alone and yields no data.
        """
        stmt = (
            sa_update(model)
            .where(*_conditions(model, eq=match))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        # rows are read back by the match keys the update did not overwrite
        refetch = {key: value for key, value in match.items() if key not in values}
        try:
            with self._session_factory() as db:
                updated = db.execute(stmt).rowcount
                db.commit()
                rows = []
                if updated:
                    rows = db.execute(sa_select(model).where(*_conditions(model, eq=refetch))).scalars().all()
        except SQLAlchemyError as e:
            logger.error("update on %s failed: %s", model.__tablename__, e)
            return QueryResult(error=str(e))
        return QueryResult(data=list(rows))


def _conditions(model, *, eq=None, in_=None, gte=None, lte=None) -> list:
    conditions = []
    for key, value in (eq or {}).items():
        conditions.append(getattr(model, key) == value)
    for key, values in (in_ or {}).items():
        conditions.append(getattr(model, key).in_(list(values)))
    for key, value in (gte or {}).items():
        conditions.append(getattr(model, key) >= value)
    for key, value in (lte or {}).items():
        conditions.append(getattr(model, key) <= value)
    return conditions


def get_data_client(session_factory=Depends(get_session_factory)) -> DataClient:
    return DataClient(session_factory)
