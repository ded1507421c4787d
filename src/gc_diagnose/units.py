"""Unit conversions shared by the classifier, aggregator and analyzer.

Internal units:
- memory: kilobytes (int)
- durations: microseconds (int)
- CPU times: centiseconds (int)
- timestamps: milliseconds (int)
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Decimal
from typing import TypeAlias

KilobytesValue: TypeAlias = int
MicrosValue: TypeAlias = int
MillisValue: TypeAlias = int
CentisValue: TypeAlias = int

# Parallelism reported when wall time is zero but CPU time is not.
MAX_PARALLELISM = 2**31 - 1

# Datestamp-only timestamps are measured from this reference until a run start date is known.
REFERENCE_EPOCH = datetime(2000, 1, 1)

_SIZE_FACTORS: dict[str, Decimal] = {
    "B": Decimal(1) / Decimal(1024),
    "K": Decimal(1),
    "M": Decimal(1024),
    "G": Decimal(1024 * 1024),
    "T": Decimal(1024 * 1024 * 1024),
}

_OPTION_SIZE_PATTERN: re.Pattern[str] = re.compile(r"(?P<value>\d+)(?P<unit>[bBkKmMgGtT])?")
_DATESTAMP_PATTERN: re.Pattern[str] = re.compile(
    r"(?P<date>\d{4}-\d{2}-\d{2})[T ](?P<time>\d{2}:\d{2}:\d{2})[.,](?P<millis>\d{3})"
)


def to_decimal(text: str) -> Decimal:
    """Parse a log decimal, accepting a comma as the decimal separator."""
    return Decimal(text.strip().replace(",", "."))


def _round(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def parse_size_to_kb(size_text: str) -> KilobytesValue:
    """Parse a JVM size token like '1024K', '1.5M', '0.0B' into KB."""
    match = re.fullmatch(
        r"(?P<value>\d+(?:[.,]\d+)?)\s*(?P<unit>[BKMGTbkmgt])", size_text.strip()
    )
    if not match:
        raise ValueError(f"Unrecognized size token: {size_text}")
    factor = _SIZE_FACTORS[match.group("unit").upper()]
    return _round(to_decimal(match.group("value")) * factor)


def option_size_to_bytes(size_text: str) -> int:
    """Convert an option value like '256m' or '1073741824' to bytes."""
    match = _OPTION_SIZE_PATTERN.fullmatch(size_text.strip())
    if not match:
        raise ValueError(f"Unrecognized option size: {size_text}")
    # A bare number counts bytes
    factor = _SIZE_FACTORS[(match.group("unit") or "B").upper()]
    return int(Decimal(match.group("value")) * factor * 1024)


def secs_to_micros(text: str) -> MicrosValue:
    return _round(to_decimal(text) * 1_000_000)


def secs_to_millis(text: str) -> MillisValue:
    return _round(to_decimal(text) * 1000)


def millis_to_micros(text: str) -> MicrosValue:
    return _round(to_decimal(text) * 1000)


def secs_to_centis(text: str) -> CentisValue:
    return _round(to_decimal(text) * 100)


def micros_to_millis(micros: int) -> MillisValue:
    """Truncate microseconds to whole milliseconds."""
    return int((Decimal(micros) / 1000).to_integral_value(rounding=ROUND_DOWN))


def nanos_to_micros(nanos: int) -> MicrosValue:
    return int((Decimal(nanos) / 1000).to_integral_value(rounding=ROUND_DOWN))


def nanos_to_millis(nanos: int) -> MillisValue:
    return int((Decimal(nanos) / 1_000_000).to_integral_value(rounding=ROUND_DOWN))


def percent(numerator: int, denominator: int) -> int:
    """Ratio rounded HALF_EVEN to 2 decimals, returned as an integer percent."""
    ratio = (Decimal(numerator) / Decimal(denominator)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_EVEN
    )
    return int(ratio.scaleb(2))


def ratio_whole(numerator: int, denominator: int) -> int:
    """Ratio rounded HALF_EVEN to a whole number."""
    return _round(Decimal(numerator) / Decimal(denominator))


def years_literal(days: int) -> str:
    """Days expressed as fractional years with one decimal, e.g. '2.3'."""
    years = (Decimal(days) / Decimal(365)).quantize(Decimal("0.1"), rounding=ROUND_HALF_EVEN)
    return str(years)


def calc_parallelism(user: CentisValue, sys: CentisValue, real: CentisValue) -> int:
    """Worker CPU time over wall time as a percent (100 = one thread busy)."""
    if real == 0:
        if user == 0 and sys == 0:
            return 100
        return MAX_PARALLELISM
    return percent(user + sys, real)


def parse_datestamp(text: str) -> datetime:
    """Parse a log datestamp (e.g. 2023-08-25T02:15:57.862-0400) as wall-clock time.

    The zone offset is ignored: every datestamp in one log shares the same offset.
    """
    match = _DATESTAMP_PATTERN.search(text)
    if not match:
        raise ValueError(f"Unrecognized datestamp: {text}")
    parsed = datetime.strptime(
        f"{match.group('date')} {match.group('time')}", "%Y-%m-%d %H:%M:%S"
    )
    return parsed + timedelta(milliseconds=int(match.group("millis")))


def datetime_to_millis(moment: datetime, reference: datetime = REFERENCE_EPOCH) -> MillisValue:
    delta = moment - reference
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def datestamp_to_millis(text: str) -> MillisValue:
    """Milliseconds from the reference epoch to the datestamp."""
    return datetime_to_millis(parse_datestamp(text))


def millis_to_datetime(millis: MillisValue, reference: datetime = REFERENCE_EPOCH) -> datetime:
    return reference + timedelta(milliseconds=millis)


def day_diff(start: datetime, end: datetime) -> int:
    return (end - start).days
