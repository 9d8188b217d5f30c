from __future__ import annotations

import logging
import time
from typing import Callable


LOGGER = logging.getLogger("docker_step")

RETRY_DELAY_STEP_SEC = 2


def retry_delay_seconds(attempt: int) -> int:
    return max(0, attempt - 1) * RETRY_DELAY_STEP_SEC


def retry(
    max_attempts: int,
    action: Callable[[], int],
    *,
    sleep: Callable[[float], None] | None = None,
) -> int:
    """Run ``action`` until it returns 0.

    ``max_attempts == 0`` means a single attempt with no retries. Delays grow
    linearly: 0, 2, 4, ... seconds before the second, third, fourth attempt.
    """
    attempt = 1
    while True:
        status = action()
        if status == 0:
            return 0
        LOGGER.warning("Exited with %s", status)
        if max_attempts == 0:
            return status
        if attempt >= max_attempts:
            LOGGER.warning("Failed %s retries", attempt)
            return status
        LOGGER.info("Retrying %s more times...", max_attempts - attempt)
        (sleep or time.sleep)(retry_delay_seconds(attempt))
        attempt += 1
