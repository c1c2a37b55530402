from __future__ import annotations

import getpass
import logging
import os
from pathlib import Path

from .errors import DiscoveryError

logger = logging.getLogger(__name__)


REQUIRED_BINARIES = ("pg_ctl", "initdb", "pg_isready")


def _is_server_install(version_dir: Path) -> bool:
    bin_dir = version_dir / "bin"
    return all((bin_dir / binary).is_file() for binary in REQUIRED_BINARIES)


def _version_key(name: str) -> tuple[int, ...]:
    parts = []
    for part in name.split("."):
        parts.append(int(part) if part.isdigit() else -1)
    return tuple(parts)


def get_postgres_dir(pg_root: Path, version: str | None = None) -> Path:
    """
    Get the path to an installed postgres version.

    :param pg_root: The directory holding one subdirectory per version.
    :param version: Pin a version instead of picking the newest one.
    :return: The path to the version directory.
    """
    if version is not None:
        candidate = pg_root / version
        if not _is_server_install(candidate):
            raise DiscoveryError(
                f"postgres {version} server binaries ({', '.join(REQUIRED_BINARIES)}) "
                f"are not installed under {candidate / 'bin'}"
            )
        return candidate

    try:
        entries = [entry for entry in pg_root.iterdir() if _is_server_install(entry)]
    except FileNotFoundError:
        entries = []
    if not entries:
        raise DiscoveryError(f"no postgres server installation found under {pg_root}")
    return max(entries, key=lambda entry: _version_key(entry.name))


def get_postgres_bin_dir(pg_root: Path, version: str | None = None) -> Path:
    """
    Get the path to the postgres binaries.

    :return: The path to the postgres binaries.
    """
    return get_postgres_dir(pg_root, version) / "bin"


def get_pg_environ(bin_dir: Path) -> dict[str, str]:
    lib_dir = bin_dir.parent / "lib"
    environ = {
        **os.environ,
        "LD_LIBRARY_PATH": str(lib_dir),
        "PATH": os.environ.get("PATH", "") + ":" + str(bin_dir),
    }
    return environ


def get_command_prefix(service_user: str | None) -> list[str]:
    """
    Get the prefix that runs a command as the postgres service account.
    Nothing is needed when we already are that user.
    """
    if service_user is None or getpass.getuser() == service_user:
        return []
    logger.debug(f"Running server commands as {service_user} via sudo")
    return ["sudo", "-u", service_user]
