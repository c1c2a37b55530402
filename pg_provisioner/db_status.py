from __future__ import annotations

import dataclasses
import enum
from pathlib import Path


class ServerState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    STOPPED = "stopped"
    STARTING = "starting"
    READY = "ready"


@dataclasses.dataclass(frozen=True)
class DBStatus:
    """
    The status of a postgres server.
    """

    pg_data: Path
    logfile: Path
    port: int
    state: ServerState
    pid: int | None

    @property
    def running(self) -> bool:
        return self.state in (ServerState.STARTING, ServerState.READY)
