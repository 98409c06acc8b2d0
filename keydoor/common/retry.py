from logging import Logger
from typing import Optional


def retry_time(base: float, logger: Optional[Logger]) -> float:
    """Fixed retry delay. Negative values are taken as their magnitude."""
    if base < 0 and logger:
        logger.warning("Negative retry interval %f, using %f instead", base, abs(base))

    return abs(base)


class SessionBackoff:
    """Bookkeeping for failed session creations.

    Every failure is followed by the same delay; the failure counter is only
    kept for logging and is reset once a session comes up.
    """

    interval: float
    failures: int

    def __init__(self, interval: float, logger: Optional[Logger] = None) -> None:
        self.interval = retry_time(interval, logger)
        self.failures = 0

    def failed(self) -> float:
        self.failures += 1
        return self.interval

    def succeeded(self) -> None:
        self.failures = 0
