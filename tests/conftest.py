"""
Pytest configuration and shared fixtures.
"""

import subprocess
from pathlib import Path

import pytest

from pg_provisioner.db_config import ProvisionConfig


class FakeServer:
    """Stands in for subprocess.run when it drives pg_ctl and pg_isready."""

    def __init__(self, data_dir: Path, running=False, failed_probes=0, never_ready=False):
        self.data_dir = data_dir
        self.running = running
        self.failed_probes = failed_probes
        self.never_ready = never_ready
        self.commands = []

    def _result(self, args, returncode, stdout=""):
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr="")

    def __call__(self, args, **kwargs):
        if args[0] == "sudo":
            self.commands.append("sudo")
            args = args[3:]
        binary = Path(args[0]).name
        if binary == "test":
            self.commands.append("test")
            return self._result(args, 0 if Path(args[2]).exists() else 1)
        if binary == "pg_isready":
            self.commands.append("pg_isready")
            if not self.running or self.never_ready:
                return self._result(args, 2)
            if self.failed_probes > 0:
                self.failed_probes -= 1
                return self._result(args, 1)
            return self._result(args, 0)

        action = args[1]
        self.commands.append(action)
        if action == "status":
            if self.running:
                out = (
                    "pg_ctl: server is running (PID: 4242)\n"
                    f'/usr/lib/postgresql/16/bin/postgres "-D" "{self.data_dir}" "-p" "5000"\n'
                )
                return self._result(args, 0, out)
            return self._result(args, 3, "pg_ctl: no server running\n")
        if action == "initdb":
            self.data_dir.mkdir(parents=True, exist_ok=True)
            (self.data_dir / "PG_VERSION").write_text("16\n")
            return self._result(args, 0, "Success.\n")
        if action == "start":
            self.running = True
            return self._result(args, 0, "server starting\n")
        if action == "stop":
            self.running = False
            return self._result(args, 0, "server stopped\n")
        return self._result(args, 0)


def install_binaries(version_dir: Path, binaries=("pg_ctl", "initdb", "pg_isready")):
    """Create empty stand-ins for the postgres binaries of one version."""
    bin_dir = version_dir / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    for binary in binaries:
        (bin_dir / binary).write_text("")
    return bin_dir


@pytest.fixture
def pg_root(tmp_path):
    """A fake installation directory with a single postgres version."""
    root = tmp_path / "postgresql"
    install_binaries(root / "16")
    return root


@pytest.fixture
def config(tmp_path, pg_root):
    """Configuration pointing at temporary directories."""
    return ProvisionConfig(
        data_dir=tmp_path / "data",
        pg_root=pg_root,
        service_user=None,
        output_dir=tmp_path / "out",
    )


@pytest.fixture
def initialized(config):
    """Mark the data directory as already initialized."""
    config.data_dir.mkdir(parents=True)
    config.version_file.write_text("16\n")
    return config
