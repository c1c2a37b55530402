from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Mapping

DEFAULT_EXTENSIONS = ("uuid-ossp", "pgcrypto", "citext")

DEFAULT_ROLE_SETTINGS = {
    "client_encoding": "utf8",
    "default_transaction_isolation": "read committed",
    "timezone": "UTC",
}


@dataclasses.dataclass(frozen=True)
class ProvisionConfig:
    """
    The desired state of a local postgres server and its application database.
    Every provisioning step reads its targets from here.
    """

    db_name: str = "myapp"
    db_user: str = "appuser"
    db_password: str = "dbuser123"
    db_port: int = 5000
    data_dir: Path = Path("/var/lib/postgresql/data")

    host: str = "localhost"
    pg_root: Path = Path("/usr/lib/postgresql")
    pg_version: str | None = None
    service_user: str | None = "postgres"
    superuser: str = "postgres"
    superuser_password: str | None = None
    logfile: Path | None = None
    output_dir: Path = Path(".")
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    role_settings: Mapping[str, str] = dataclasses.field(
        default_factory=lambda: dict(DEFAULT_ROLE_SETTINGS), hash=False
    )
    wait_attempts: int = 20
    wait_interval: float = 1.0

    def __post_init__(self):
        # Accept plain strings from callers and normalize them.
        for name in ("data_dir", "pg_root", "output_dir"):
            object.__setattr__(self, name, Path(getattr(self, name)))
        if self.logfile is not None:
            object.__setattr__(self, "logfile", Path(self.logfile))
        object.__setattr__(self, "extensions", tuple(self.extensions))
        if self.wait_attempts < 1:
            raise ValueError("wait_attempts must be at least 1")

    @property
    def pidfile(self) -> Path:
        return self.data_dir / "postmaster.pid"

    @property
    def version_file(self) -> Path:
        return self.data_dir / "PG_VERSION"

    @property
    def server_log(self) -> Path:
        """
        Where pg_ctl redirects the server output.
        Defaults to a file next to the data directory.
        """
        if self.logfile is not None:
            return self.logfile
        return self.data_dir.with_name(f"{self.data_dir.name}.log")

    @property
    def connection_file(self) -> Path:
        return self.output_dir / "db_connection.txt"

    @property
    def env_file(self) -> Path:
        return self.output_dir / "db_visualizer" / "postgres.env"

    @property
    def url(self) -> str:
        """
        The database URL without credentials.
        """
        return f"postgresql://{self.host}:{self.db_port}/{self.db_name}"

    @property
    def dsn(self) -> str:
        """
        The database URL with the application role's credentials.
        """
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.host}:{self.db_port}/{self.db_name}"
        )
