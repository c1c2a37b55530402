import logging
from pathlib import Path
from typing import List, Optional

import typer

from pg_provisioner import ProvisionError, Provisioner
from pg_provisioner.artifacts import connection_command, env_lines
from pg_provisioner.db_config import DEFAULT_EXTENSIONS, ProvisionConfig

app = typer.Typer(help="Provision a local PostgreSQL server and application database.")

formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
handler = logging.StreamHandler()
handler.setFormatter(formatter)
logger = logging.getLogger("pg_provisioner")
logger.addHandler(handler)
logger.setLevel(logging.INFO)


def main():
    app()


@app.callback()
def configure(
    ctx: typer.Context,
    db_name: str = typer.Option("myapp", envvar="PGPROV_DB_NAME"),
    db_user: str = typer.Option("appuser", envvar="PGPROV_DB_USER"),
    db_password: str = typer.Option("dbuser123", envvar="PGPROV_DB_PASSWORD"),
    db_port: int = typer.Option(5000, envvar="PGPROV_DB_PORT"),
    data_dir: Path = typer.Option(Path("/var/lib/postgresql/data"), envvar="PGPROV_DATA_DIR"),
    host: str = typer.Option("localhost", envvar="PGPROV_HOST"),
    pg_root: Path = typer.Option(Path("/usr/lib/postgresql"), envvar="PGPROV_PG_ROOT"),
    pg_version: Optional[str] = typer.Option(None, envvar="PGPROV_PG_VERSION"),
    service_user: str = typer.Option("postgres", envvar="PGPROV_SERVICE_USER"),
    no_sudo: bool = typer.Option(False, "--no-sudo", help="Run server commands as the current user."),
    superuser: str = typer.Option("postgres", envvar="PGPROV_SUPERUSER"),
    superuser_password: Optional[str] = typer.Option(None, envvar="PGPROV_SUPERUSER_PASSWORD"),
    logfile: Optional[Path] = typer.Option(None, envvar="PGPROV_LOGFILE"),
    output_dir: Path = typer.Option(Path("."), envvar="PGPROV_OUTPUT_DIR"),
    extension: Optional[List[str]] = typer.Option(None, envvar="PGPROV_EXTENSIONS"),
    wait_attempts: int = typer.Option(20, min=1, envvar="PGPROV_WAIT_ATTEMPTS"),
    wait_interval: float = typer.Option(1.0, min=0.0, envvar="PGPROV_WAIT_INTERVAL"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    if verbose:
        logger.setLevel(logging.DEBUG)
    ctx.obj = ProvisionConfig(
        db_name=db_name,
        db_user=db_user,
        db_password=db_password,
        db_port=db_port,
        data_dir=data_dir,
        host=host,
        pg_root=pg_root,
        pg_version=pg_version,
        service_user=None if no_sudo else service_user,
        superuser=superuser,
        superuser_password=superuser_password,
        logfile=logfile,
        output_dir=output_dir,
        extensions=tuple(extension) if extension else DEFAULT_EXTENSIONS,
        wait_attempts=wait_attempts,
        wait_interval=wait_interval,
    )


def _fail(error: ProvisionError):
    logger.error(f"Provisioning failed at stage {error.stage}: {error.message}")
    typer.echo(f"ERROR: {error}", err=True)
    raise typer.Exit(code=error.exit_code)


@app.command()
def provision(ctx: typer.Context):
    """Start the server if needed and converge the role, database and extensions."""
    try:
        Provisioner(ctx.obj).run()
    except ProvisionError as e:
        _fail(e)


@app.command()
def status(ctx: typer.Context):
    """Print the state of the server."""
    try:
        db_status = Provisioner(ctx.obj).status()
    except ProvisionError as e:
        _fail(e)
    typer.echo(f"{db_status.state.value} (port {db_status.port}, pid {db_status.pid})")


@app.command()
def stop(ctx: typer.Context):
    """Stop the server, killing it if a clean shutdown fails."""
    try:
        pg = Provisioner(ctx.obj)
        try:
            pg.stop()
        except ProvisionError:
            pg.kill()
    except ProvisionError as e:
        _fail(e)


@app.command()
def env(ctx: typer.Context):
    """Print the connection command and environment file without touching the server."""
    typer.echo(connection_command(ctx.obj))
    for line in env_lines(ctx.obj):
        typer.echo(line)


if __name__ == "__main__":
    main()
