from __future__ import annotations

import logging
from pathlib import Path

from .db_config import ProvisionConfig

logger = logging.getLogger(__name__)


def connection_command(config: ProvisionConfig) -> str:
    return f"psql {config.dsn}"


def env_lines(config: ProvisionConfig) -> list[str]:
    """
    The environment file content. POSTGRES_URL carries no credentials.
    """
    variables = {
        "POSTGRES_URL": config.url,
        "POSTGRES_USER": config.db_user,
        "POSTGRES_PASSWORD": config.db_password,
        "POSTGRES_DB": config.db_name,
        "POSTGRES_PORT": str(config.db_port),
    }
    return [f'export {key}="{value}"' for key, value in variables.items()]


def write_artifacts(config: ProvisionConfig) -> tuple[Path, Path]:
    """
    Overwrite the connection file and the environment file.
    :return: The paths of both files.
    """
    config.connection_file.parent.mkdir(parents=True, exist_ok=True)
    config.connection_file.write_text(connection_command(config) + "\n")
    logger.info(f"Connection string saved to {config.connection_file}")

    config.env_file.parent.mkdir(parents=True, exist_ok=True)
    config.env_file.write_text("\n".join(env_lines(config)) + "\n")
    logger.info(f"Environment variables saved to {config.env_file}")
    return config.connection_file, config.env_file
