"""Processing statistics shared by the router and the supervisor."""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict


@dataclass
class IndexerStats:
    """Running counters for one indexer process."""
    clock: Callable[[], float] = time.monotonic
    events_processed: int = 0
    errors: int = 0
    ignored: int = 0
    dropped: int = 0
    started_at: float = field(default=0.0)

    def __post_init__(self):
        if not self.started_at:
            self.started_at = self.clock()

    def record_processed(self) -> None:
        self.events_processed += 1

    def record_error(self) -> None:
        self.errors += 1

    def record_ignored(self) -> None:
        self.ignored += 1

    def record_dropped(self) -> None:
        """A malformed frame never reached the router; it still counts as an error."""
        self.dropped += 1
        self.errors += 1

    def uptime(self) -> float:
        return max(self.clock() - self.started_at, 0.0)

    def rate(self) -> float:
        """Events per second since start."""
        uptime = self.uptime()
        if uptime <= 0:
            return 0.0
        return self.events_processed / uptime

    def format_line(self) -> str:
        return (
            f"[Stats] Events: {self.events_processed} | Errors: {self.errors} | "
            f"Rate: {self.rate():.2f}/s | Uptime: {round(self.uptime())}s"
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            'events_processed': self.events_processed,
            'errors': self.errors,
            'ignored': self.ignored,
            'dropped': self.dropped,
            'rate': self.rate(),
            'uptime': self.uptime(),
        }
