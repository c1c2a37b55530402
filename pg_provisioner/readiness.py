from __future__ import annotations

import logging
import time
from typing import Callable

from .errors import ReadinessTimeout

logger = logging.getLogger(__name__)


def wait_for_ready(
    probe: Callable[[], bool],
    attempts: int = 20,
    interval: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Poll a readiness probe until it succeeds.
    :param probe: Returns True once the server accepts connections.
    :param attempts: How many times to probe before giving up.
    :param interval: Seconds to sleep between two probes.
    :param sleep: Sleep function, replaceable in tests.
    :return: The attempt on which the probe succeeded.
    """
    for attempt in range(1, attempts + 1):
        if probe():
            logger.info("PostgreSQL is ready!")
            return attempt
        logger.info(f"Waiting... ({attempt}/{attempts})")
        if attempt < attempts:
            sleep(interval)
    raise ReadinessTimeout(
        f"server did not become ready after {attempts} attempts", attempts=attempts
    )
