import logging
import re
import time
from datetime import datetime
from typing import Optional, Union

DEFAULT_FREQUENCY_MINUTES = 15
MIN_FREQUENCY_MINUTES = 5

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_frequency(value) -> Optional[int]:
    """Resolve a monitor's ``frequencyMinutes`` value.

    Falsy values fall back to the default. Strings are read up to the first
    non-digit, so ``"20m"`` is 20 and ``7.9`` is 7. Returns ``None`` when the
    value is unreadable or below the minimum.
    """
    if not value:
        return DEFAULT_FREQUENCY_MINUTES

    match = _LEADING_INT.match(str(value))
    if not match:
        return None

    frequency = int(match.group(1))
    if frequency < MIN_FREQUENCY_MINUTES:
        return None
    return frequency


def epoch_minute(now: Union[datetime, float, None] = None) -> int:
    if now is None:
        seconds = time.time()
    elif isinstance(now, datetime):
        seconds = now.timestamp()
    else:
        seconds = float(now)
    return int(seconds // 60)


def is_due(frequency_minutes: int, now: Union[datetime, float, None] = None) -> bool:
    current = epoch_minute(now)
    due = current % frequency_minutes == 0
    logging.debug("Epoch minute %s %% %s -> due=%s", current, frequency_minutes, due)
    return due
