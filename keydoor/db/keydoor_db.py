import os
from contextlib import contextmanager
from sqlite3 import Connection as SQLite3Connection
from typing import Any, Iterator, Optional, cast

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from keydoor import config, keydoor_logging

logger = keydoor_logging.init_logging("keydoor_db")


# make sure referential integrity is working for SQLite
@event.listens_for(Engine, "connect")  # type: ignore
def _set_sqlite_pragma(dbapi_connection: SQLite3Connection, _: Any) -> None:
    if isinstance(dbapi_connection, SQLite3Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_engine(url: str, **engine_args: Any) -> Engine:
    """Create the database engine holding the allow list."""
    # The keyword sqlite selects the file keys.sqlite in config.WORK_DIR
    if url == "sqlite":
        logger.info("database_url is set as 'sqlite' keyword, using default values to establish database connection")
        database_file = os.path.abspath(os.path.join(config.WORK_DIR, "keys.sqlite"))
        url = f"sqlite:///{database_file}"

        kd_dir = os.path.dirname(database_file)
        if not os.path.exists(kd_dir):
            os.makedirs(kd_dir, 0o700)

    if url.startswith("sqlite:"):
        # queries run in executor threads
        engine_args.setdefault("connect_args", {"check_same_thread": False})
    else:
        # sqlite does not support setting pool size and max overflow
        p_sz_m_ovfl = config.get("door", "database_pool_sz_ovfl", fallback="5,10")
        try:
            p_sz, m_ovfl = p_sz_m_ovfl.split(",")
            engine_args["pool_size"] = int(p_sz)
            engine_args["max_overflow"] = int(m_ovfl)
        except ValueError:
            logger.warning("Invalid database_pool_sz_ovfl '%s', using default pool size = 5, max overflow = 10", p_sz_m_ovfl)
            engine_args["pool_size"] = 5
            engine_args["max_overflow"] = 10
        logger.info(
            "Database pool size = %s, max overflow = %s", engine_args["pool_size"], engine_args["max_overflow"]
        )
        engine_args["pool_pre_ping"] = True

    # Enable DB debugging
    if config.DEBUG_DB:
        engine_args["echo"] = True

    return create_engine(url, **engine_args)


class SessionManager:
    engine: Optional[Engine]
    _scoped_session: Optional[scoped_session]

    def __init__(self) -> None:
        self.engine = None
        self._scoped_session = None

    def make_session(self, engine: Engine) -> Session:
        """
        To use: session = self.make_session(engine)
        """
        self.engine = engine
        if self._scoped_session is None:
            self._scoped_session = scoped_session(sessionmaker())
        try:
            self._scoped_session.configure(bind=self.engine)  # type: ignore
            self._scoped_session.configure(expire_on_commit=False)  # type: ignore
        except SQLAlchemyError as err:
            logger.error("Error creating SQL session manager %s", err)
        return cast(Session, self._scoped_session())

    @contextmanager
    def session_context(self, engine: Engine) -> Iterator[Session]:
        """
        Context manager for database sessions that ensures proper cleanup.
        To use:
            with session_manager.session_context(engine) as session:
                # use session
        """
        session = self.make_session(engine)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            # remove the session from the scoped session registry to prevent
            # connection leaks
            if self._scoped_session is not None:
                self._scoped_session.remove()  # type: ignore[no-untyped-call]
