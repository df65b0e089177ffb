import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from config import DATABASE_URL, DB_ECHO
from models import QueryLog
from schemas import QueryLogEntry

logger = logging.getLogger("court_app.storage")


def make_engine(url: str = DATABASE_URL, echo: bool = DB_ECHO) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every thread sees an empty db
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


engine = make_engine()


def init_db(bind: Optional[Engine] = None) -> None:
    SQLModel.metadata.create_all(bind or engine)


@contextmanager
def get_session(bind: Optional[Engine] = None) -> Iterator[Session]:
    with Session(bind or engine) as session:
        yield session


class SqlLogPersistence:
    """Durable surface for the query log store, backed by the QueryLog table."""

    def __init__(self, bind: Optional[Engine] = None, create: bool = True):
        self.engine = bind or engine
        if create:
            init_db(self.engine)

    def save(self, entries: Iterable[QueryLogEntry]) -> None:
        with get_session(self.engine) as ses:
            next_seq = (ses.exec(select(func.max(QueryLog.seq))).one() or 0) + 1
            for entry in entries:
                row = ses.get(QueryLog, entry.id)
                if row is None:
                    ses.add(QueryLog.from_entry(entry, seq=next_seq))
                    next_seq += 1
                else:
                    # entries are immutable; keep the stored insertion order
                    ses.merge(QueryLog.from_entry(entry, seq=row.seq))
            ses.commit()

    def load(self) -> List[QueryLogEntry]:
        with get_session(self.engine) as ses:
            rows = ses.exec(select(QueryLog).order_by(QueryLog.seq, QueryLog.created_at)).all()
            return [row.to_entry() for row in rows]

    def clear(self) -> None:
        with get_session(self.engine) as ses:
            for row in ses.exec(select(QueryLog)).all():
                ses.delete(row)
            ses.commit()
        logger.info("Query log table cleared")
