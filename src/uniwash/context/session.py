from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy import event
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import scoped_session, sessionmaker

from uniwash.context.core import StoppableService
from uniwash.modules import errors


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.engine import Engine


SERIALIZABLE = 'SERIALIZABLE'


class SessionProvider(StoppableService):
    """Global session utility. It provides a SERIALIZABLE session to uniwash.
    If you want to override this provider, be sure to set the isolation_level
    to SERIALIZABLE as well.

    If you don't do that, two users racing for the same slot may both end
    up with a hold, as the reservation store relies on the database to
    abort one of two conflicting transactions.

    SQLite is supported for development and testing. As pysqlite doesn't
    offer a serializable mode that covers reads, each transaction there is
    opened with ``BEGIN IMMEDIATE``, which serializes writers.

    """

    def __init__(
        self,
        dsn: str | None,
        timeout: float | None = None,
        engine_config: dict[str, Any] | None = None,
        session_config: dict[str, Any] | None = None
    ):
        if not dsn:
            raise errors.MissingSetting('dsn')

        self.dsn = dsn
        self.dialect = make_url(dsn).get_backend_name()

        if self.dialect == 'sqlite':
            self.engine = self.create_sqlite_engine(
                dsn, timeout, engine_config)
        else:
            self.assert_valid_postgres_version(dsn)
            self.engine = self.create_postgres_engine(
                dsn, timeout, engine_config)

        # objects returned by an operation stay usable after its commit
        session_config = {'expire_on_commit': False, **(session_config or {})}

        self.session = scoped_session(sessionmaker(
            bind=self.engine, **session_config
        ))

    @staticmethod
    def create_postgres_engine(
        dsn: str,
        timeout: float | None,
        engine_config: dict[str, Any] | None
    ) -> Engine:

        connect_args = {}
        if timeout:
            connect_args['options'] = (
                f'-c statement_timeout={int(timeout * 1000)}'
            )

        return create_engine(
            dsn, poolclass=QueuePool, pool_size=5, max_overflow=5,
            isolation_level=SERIALIZABLE,
            connect_args=connect_args,
            **(engine_config or {})
        )

    @staticmethod
    def create_sqlite_engine(
        dsn: str,
        timeout: float | None,
        engine_config: dict[str, Any] | None
    ) -> Engine:

        engine = create_engine(
            dsn,
            connect_args={
                'timeout': timeout or 5,
                'check_same_thread': False
            },
            **(engine_config or {})
        )

        @event.listens_for(engine, 'connect')
        def disable_implicit_transactions(
            dbapi_connection: Any,
            connection_record: Any
        ) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, 'begin')
        def begin_immediate(connection: Connection) -> None:
            connection.exec_driver_sql('BEGIN IMMEDIATE')

        return engine

    def stop_service(self) -> None:
        """ Called by the uniwash context when the session provider is being
        discarded (only in testing).

        This makes sure that replacing the session provider on the context
        doesn't leave behind any idle connections.

        """

        self.session.remove()
        self.engine.dispose()

    def get_postgres_version(self, dsn: str) -> tuple[str, int]:
        """ Returns the postgres version as a tuple (string, integer).

        Uses it's own connection to be independent from any session.

        """
        assert 'postgres' in dsn, 'Not a postgres database'

        query = text("""
            SELECT current_setting('server_version'),
                   current_setting('server_version_num')
        """)

        engine = create_engine(dsn)

        try:
            with engine.connect() as connection:
                result = connection.execute(query).first()
            assert result is not None
            version, number = result
            return version, int(number)
        finally:
            engine.dispose()

    def assert_valid_postgres_version(self, dsn: str) -> str:
        v, n = self.get_postgres_version(dsn)

        if n < 90100:
            raise RuntimeError(f'PostgreSQL 9.1+ is required, got {v}')

        return dsn
