"""Wall-clock helpers shared by records, backups and migration history."""

import time


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000
