from .db import SqlLogPersistence, engine, get_session, init_db, make_engine

__all__ = ["SqlLogPersistence", "engine", "get_session", "init_db", "make_engine"]
