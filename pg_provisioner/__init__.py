from __future__ import annotations

import dataclasses
import logging
import os
import re
import subprocess
import time
from contextlib import contextmanager
from typing import Callable, Iterator

import pg8000
from retry import retry

from .artifacts import connection_command, write_artifacts
from .catalog import CatalogClient
from .db_config import ProvisionConfig
from .db_status import DBStatus, ServerState
from .env import get_command_prefix, get_pg_environ, get_postgres_bin_dir
from .errors import (
    DiscoveryError,
    PgCtlError,
    ProvisionError,
    ReadinessTimeout,
    SQLStepError,
)
from .readiness import wait_for_ready

__all__ = [
    "CatalogClient",
    "DBStatus",
    "DiscoveryError",
    "PgCtlError",
    "ProvisionConfig",
    "ProvisionError",
    "Provisioner",
    "ReadinessTimeout",
    "SQLStepError",
    "ServerState",
]

logger = logging.getLogger(__name__)

_PID_PATTERN = re.compile(
    r"^pg_ctl: server is running \(PID: (?P<pid>\d+)\).*",
    re.MULTILINE | re.IGNORECASE,
)
_PORT_PATTERN = re.compile(r'"-p" "(?P<port>\d+)"')


class Provisioner:
    """
    Brings a local postgres server and the application role, database,
    schema and extensions into the configured state.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.sleep = sleep
        self.bin_dir = get_postgres_bin_dir(config.pg_root, config.pg_version)
        logger.info(f"Found PostgreSQL version: {self.bin_dir.parent.name}")
        logger.info(f"Using PG_BIN: {self.bin_dir}")
        self.command_prefix = get_command_prefix(config.service_user)
        self.subprocess_kwargs = {
            "env": get_pg_environ(self.bin_dir),
            "universal_newlines": True,
            "check": False,
            "capture_output": True,
            "timeout": 60,
        }

    def _command(self, binary: str, args: list[str]) -> list[str]:
        return [*self.command_prefix, str(self.bin_dir / binary), *args]

    def _run(self, args: list[str], ok_codes: tuple[int, ...] = (0,)):
        """
        Run a pg_ctl command.
        :param args: The arguments to pass to pg_ctl.
        :param ok_codes: Exit codes that do not signal a failure.
        :return: The completed pg_ctl process.
        """
        command = self._command("pg_ctl", args)
        try:
            result = subprocess.run(command, **self.subprocess_kwargs)
        except subprocess.TimeoutExpired as e:
            raise PgCtlError(f"pg_ctl {args[0]} timed out after {e.timeout}s") from e
        except OSError as e:
            raise PgCtlError(f"could not run {command[0]}: {e}") from e
        return self._handle_result(result, ok_codes)

    def _handle_result(self, result, ok_codes: tuple[int, ...] = (0,)):
        """
        Handle the result of a pg_ctl command.
        :param result: The result of the pg_ctl command.
        :return: The result, if its exit code is acceptable.
        """
        if result.returncode not in ok_codes:
            logger.error(result.stderr)
            raise PgCtlError(
                f"pg_ctl failed with code {result.returncode}: {result.stderr}"
            )
        logger.debug(result.stdout)
        return result

    def initdb(self) -> str:
        """
        Initialize the data directory using pg_ctl.
        :return: The output of initdb.
        """
        logger.info(f"Initializing PostgreSQL data directory at {self.config.data_dir}...")
        return self._run(["initdb", "-D", str(self.config.data_dir)]).stdout

    def start(self) -> str:
        """
        Launch the server in the background without waiting for it.
        :return: The output of pg_ctl.
        """
        logger.info("Starting PostgreSQL server...")
        return self._run(
            [
                "start",
                "-W",
                "-D",
                str(self.config.data_dir),
                "-l",
                str(self.config.server_log),
                "-o",
                f"-p {self.config.db_port}",
            ]
        ).stdout

    @retry(PgCtlError, tries=3, delay=1)
    def stop(self) -> str:
        """
        Stop the server using pg_ctl.
        :return: The output of pg_ctl.
        """
        logger.info(f"Stopping PostgreSQL server at {self.config.data_dir}")
        return self._run(["stop", "-D", str(self.config.data_dir), "-m", "fast"]).stdout

    def kill(self) -> DBStatus:
        """
        Kill the server process using pg_ctl.
        :return: The status after the kill.
        """
        status = self.status()
        if status.pid is None:
            return status
        logger.info(f"Killing PostgreSQL server at {self.config.data_dir}")
        self._run(["kill", "KILL", str(status.pid)])
        return self.status()

    def probe(self) -> bool:
        """
        Check whether the server accepts connections on the configured port.
        """
        command = self._command(
            "pg_isready", ["-h", self.config.host, "-p", str(self.config.db_port)]
        )
        try:
            result = subprocess.run(command, **{**self.subprocess_kwargs, "timeout": 10})
        except subprocess.TimeoutExpired:
            return False
        except OSError as e:
            raise PgCtlError(f"could not run {command[0]}: {e}") from e
        return result.returncode == 0

    def is_initialized(self) -> bool:
        """
        Check for PG_VERSION in the data directory.
        The data directory is private to the service user, so the check runs as that user.
        """
        if not self.command_prefix:
            return os.path.isfile(self.config.version_file)
        command = [*self.command_prefix, "test", "-f", str(self.config.version_file)]
        try:
            result = subprocess.run(command, **self.subprocess_kwargs)
        except subprocess.TimeoutExpired as e:
            raise PgCtlError(f"checking {self.config.version_file} timed out") from e
        except OSError as e:
            raise PgCtlError(f"could not run {command[0]}: {e}") from e
        return result.returncode == 0

    def status(self) -> DBStatus:
        """
        Get the status of the server.
        :return: The status of the server.
        """
        logger.debug(f"Getting status of database at {self.config.data_dir}")
        out = self._run(["status", "-D", str(self.config.data_dir)], ok_codes=(0, 3, 4))
        match = _PID_PATTERN.match(out.stdout)
        pid = int(match.group("pid")) if match else None

        port = _PORT_PATTERN.search(out.stdout)
        if port and int(port.group("port")) != self.config.db_port:
            logger.warning(
                f"Server at {self.config.data_dir} listens on port {port.group('port')}, "
                f"not {self.config.db_port}"
            )

        if self.probe():
            state = ServerState.READY
        elif out.returncode == 0:
            state = ServerState.STARTING
        elif self.is_initialized():
            state = ServerState.STOPPED
        else:
            state = ServerState.UNINITIALIZED
        return DBStatus(
            pg_data=self.config.data_dir,
            logfile=self.config.server_log,
            port=self.config.db_port,
            state=state,
            pid=pid,
        )

    def ensure_running(self) -> DBStatus:
        """
        Start the server from whatever state it is in and wait until it is ready.
        :return: The status of the ready server.
        """
        status = self.status()
        if status.state is ServerState.READY:
            logger.info(f"PostgreSQL is already running on port {self.config.db_port}!")
            return status

        if status.state is ServerState.STARTING:
            logger.info(f"Found existing PostgreSQL process on port {self.config.db_port}")
        else:
            if status.state is ServerState.UNINITIALIZED:
                self.initdb()
            self.start()

        logger.info("Waiting for PostgreSQL to become ready...")
        try:
            wait_for_ready(
                self.probe,
                attempts=self.config.wait_attempts,
                interval=self.config.wait_interval,
                sleep=self.sleep,
            )
        except ReadinessTimeout:
            logger.error(
                f"PostgreSQL did not become ready on port {self.config.db_port}. "
                f"See {self.config.server_log}"
            )
            raise
        return dataclasses.replace(status, state=ServerState.READY)

    @contextmanager
    def _sql_step(self, step: str) -> Iterator[None]:
        try:
            yield
        except pg8000.Error as e:
            logger.error(f"SQL step {step} failed: {e}")
            raise SQLStepError(step, str(e)) from e

    @contextmanager
    def _catalog(self, database: str) -> Iterator[CatalogClient]:
        with self._sql_step("connect"):
            client = CatalogClient(self.config, database)
        with client:
            yield client

    def provision_catalog(self) -> list[str]:
        """
        Converge the role, database, schema and extensions.
        :return: The extensions installed in the application database.
        """
        logger.info("Provisioning database/role...")
        with self._catalog("postgres") as client:
            with self._sql_step("role"):
                client.ensure_role()
            with self._sql_step("database"):
                client.ensure_database()
        with self._catalog(self.config.db_name) as client:
            with self._sql_step("schema"):
                client.ensure_schema()
            with self._sql_step("extensions"):
                return client.ensure_extensions()

    def run(self) -> list[str]:
        """
        Run the whole provisioning pipeline.
        :return: The extensions installed in the application database.
        """
        logger.info("Starting PostgreSQL setup...")
        self.ensure_running()
        extensions = self.provision_catalog()
        write_artifacts(self.config)

        logger.info("PostgreSQL provisioning complete.")
        logger.info(f"Database: {self.config.db_name}")
        logger.info(f"User: {self.config.db_user}")
        logger.info(f"Port: {self.config.db_port}")
        logger.info(f"Extensions: {', '.join(extensions)}")
        logger.info(f"To use with the DB viewer, run: source {self.config.env_file}")
        logger.info(f"To connect: {connection_command(self.config)}")
        return extensions
