from __future__ import annotations

import logging
from contextlib import contextmanager
from types import TracebackType
from typing import Iterator, Type

import pg8000.dbapi
from pg8000.native import identifier, literal
from retry import retry

from .db_config import ProvisionConfig

logger = logging.getLogger(__name__)

DEFAULT_PRIVILEGE_OBJECTS = ("TABLES", "SEQUENCES", "FUNCTIONS", "TYPES")


class CatalogClient:
    """
    A superuser connection to one database of the provisioned server.
    Every ensure_* method checks the catalog first and then converges it,
    so calling it again is a no-op apart from re-asserting grants.
    """

    def __init__(self, config: ProvisionConfig, database: str = "postgres"):
        self.config = config
        self.database = database
        self.connection = self._connect()
        # CREATE DATABASE refuses to run inside a transaction block
        self.connection.autocommit = True

    @retry(pg8000.Error, tries=10, delay=0.1, backoff=2, logger=logger, max_delay=5)
    def _connect(self) -> pg8000.dbapi.Connection:
        logger.debug(f"Connecting to {self.database} on port {self.config.db_port}")
        return pg8000.dbapi.connect(
            user=self.config.superuser,
            password=self.config.superuser_password,
            host=self.config.host,
            port=self.config.db_port,
            database=self.database,
        )

    def close(self) -> None:
        self.connection.close()

    def __enter__(self) -> CatalogClient:
        return self

    def __exit__(
        self,
        exc_type: Type[Exception] | None,
        exc_val: Exception | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[pg8000.dbapi.Cursor]:
        """
        Run the statements issued on the yielded cursor atomically.
        """
        cursor = self.connection.cursor()
        cursor.execute("BEGIN")
        try:
            yield cursor
        except Exception:
            cursor.execute("ROLLBACK")
            raise
        else:
            cursor.execute("COMMIT")
        finally:
            cursor.close()

    def _exists(self, query: str, value: str) -> bool:
        cursor = self.connection.cursor()
        try:
            cursor.execute(query, (value,))
            return cursor.fetchone() is not None
        finally:
            cursor.close()

    def role_exists(self, name: str) -> bool:
        return self._exists("SELECT 1 FROM pg_catalog.pg_roles WHERE rolname = %s", name)

    def database_exists(self, name: str) -> bool:
        return self._exists("SELECT 1 FROM pg_catalog.pg_database WHERE datname = %s", name)

    def ensure_role(self) -> bool:
        """
        Create the application role if missing and sync its attributes.
        The password is reset on every call.
        :return: Whether the role had to be created.
        """
        role = identifier(self.config.db_user)
        password = literal(self.config.db_password)
        created = not self.role_exists(self.config.db_user)
        with self.transaction() as cursor:
            if created:
                logger.info(f"Creating role {self.config.db_user}")
                cursor.execute(f"CREATE ROLE {role} WITH LOGIN PASSWORD {password}")
            cursor.execute(f"ALTER ROLE {role} WITH LOGIN PASSWORD {password}")
            cursor.execute(f"ALTER ROLE {role} CREATEDB")
            for setting, value in self.config.role_settings.items():
                cursor.execute(
                    f"ALTER ROLE {role} SET {identifier(setting)} TO {literal(value)}"
                )
        return created

    def ensure_database(self) -> bool:
        """
        Create the application database if missing, owned by the application role.
        :return: Whether the database had to be created.
        """
        database = identifier(self.config.db_name)
        owner = identifier(self.config.db_user)
        created = not self.database_exists(self.config.db_name)
        if created:
            logger.info(f"Creating database {self.config.db_name}")
            cursor = self.connection.cursor()
            try:
                cursor.execute(f"CREATE DATABASE {database} OWNER {owner}")
            finally:
                cursor.close()
        with self.transaction() as cursor:
            cursor.execute(f"ALTER DATABASE {database} OWNER TO {owner}")
            cursor.execute(f"GRANT ALL PRIVILEGES ON DATABASE {database} TO {owner}")
        return created

    def ensure_schema(self, schema: str = "public") -> None:
        """
        Hand the schema over to the application role and set default privileges
        so objects created later by migrations stay accessible.
        """
        name = identifier(schema)
        owner = identifier(self.config.db_user)
        with self.transaction() as cursor:
            cursor.execute(f"CREATE SCHEMA IF NOT EXISTS {name}")
            cursor.execute(f"ALTER SCHEMA {name} OWNER TO {owner}")
            cursor.execute(f"GRANT USAGE, CREATE ON SCHEMA {name} TO {owner}")
            cursor.execute(f"GRANT ALL ON SCHEMA {name} TO {owner}")
            for objects in DEFAULT_PRIVILEGE_OBJECTS:
                cursor.execute(
                    f"ALTER DEFAULT PRIVILEGES IN SCHEMA {name} "
                    f"GRANT ALL ON {objects} TO {owner}"
                )

    def installed_extensions(self) -> list[str]:
        cursor = self.connection.cursor()
        try:
            cursor.execute("SELECT extname FROM pg_catalog.pg_extension ORDER BY extname")
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def ensure_extensions(self) -> list[str]:
        """
        Install the configured extensions. Extensions are never dropped.
        :return: All extensions installed in the database afterwards.
        """
        with self.transaction() as cursor:
            for extension in self.config.extensions:
                logger.debug(f"Ensuring extension {extension}")
                cursor.execute(f"CREATE EXTENSION IF NOT EXISTS {identifier(extension)}")
        return self.installed_extensions()
