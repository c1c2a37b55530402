from __future__ import annotations


class ProvisionError(Exception):
    """
    Base class for every fatal provisioning failure.
    """

    stage = "provision"
    exit_code = 1

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class DiscoveryError(ProvisionError):
    """
    No usable postgres installation was found.
    """

    stage = "discovery"
    exit_code = 2


class ReadinessTimeout(ProvisionError):
    """
    The server did not accept connections within the polling budget.
    """

    stage = "readiness"
    exit_code = 3

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class SQLStepError(ProvisionError):
    """
    A statement of a provisioning step failed.
    """

    stage = "sql"
    exit_code = 4

    def __init__(self, step: str, message: str):
        super().__init__(f"{step} step failed: {message}")
        self.step = step


class PgCtlError(ProvisionError):
    """
    An error occurred while running pg_ctl or initdb.
    """

    stage = "server"
    exit_code = 5
