import time


def get_current_time_millis() -> int:
    """Milliseconds since the epoch, the unit of every timestamp in mltrack."""
    return int(round(time.time() * 1000))
