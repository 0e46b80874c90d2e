"""Classifier predicates deciding which channels want a log line."""

PROC_START_TAG = b"am_proc_start"


def am_proc_start_filter(line: bytes) -> bool:
    """Match activity manager process start events."""
    return PROC_START_TAG in line


def magisk_log_filter(line: bytes) -> bool:
    """Match everything that is not a process start event."""
    return not am_proc_start_filter(line)
