import datetime
import logging
import re
import time
from contextlib import contextmanager
from typing import Dict, Optional

_logger = logging.getLogger("timing")

_FRACTION_RE = re.compile(r"\.(\d+)")
_SHORT_OFFSET_RE = re.compile(r"(:\d{2}(?:\.\d+)?[+-]\d{2})$")


@contextmanager
def timed_step(step: str, timings: Optional[Dict[str, float]] = None):
    """
    Logs how long the wrapped block took and, when a dict is given,
    stores it there as `<step>_ms`.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        ms = (time.perf_counter() - start) * 1000.0
        if timings is not None:
            timings[f"{step}_ms"] = round(ms, 2)
        _logger.info("[timing] step=%s ms=%.2f", step, ms)


def parse_timestamp(value) -> datetime.datetime:
    """
    Parses the timestamps Postgres hands back: fractions of any length,
    a trailing Z or a bare +HH offset. Naive values are taken as UTC.
    """
    if isinstance(value, datetime.datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        text = _SHORT_OFFSET_RE.sub(r"\1:00", text)
        parsed = datetime.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed
