"""Regex fragments shared by the classifier and the normalizer.

Fragments with named groups may appear at most once in a composed pattern.
"""

from __future__ import annotations

import re

from gc_diagnose.models import Trigger

# ============================================================
# TIMESTAMPS AND DECORATORS
# ============================================================

DATESTAMP_BODY = r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[.,]\d{3}(?:[-+]\d{4}|Z)?"
UPTIME_BODY = r"\d{1,12}[.,]\d{3}"

# Legacy (JDK8 and earlier) line prefix: "<datestamp>: <uptime>: ", both optional.
LEGACY_PREFIX = (
    rf"(?:(?P<datestamp>{DATESTAMP_BODY}): )?"
    rf"(?:(?P<uptime>{UPTIME_BODY}): )?"
)

# Same shape without groups, for timestamps embedded inside an entry.
INNER_TIMESTAMP = rf"(?:{DATESTAMP_BODY}: )?(?:{UPTIME_BODY}: )?"

# Unified logging decorator: [time][time2][pid][tid][level][tags] GC(n)
DECORATOR = (
    r"\[(?:"
    rf"(?P<u_datestamp>{DATESTAMP_BODY})"
    rf"|(?P<u_uptime>{UPTIME_BODY})s"
    r"|(?P<u_uptimemillis>\d+)ms"
    r")\]"
    r"(?:\[(?:"
    rf"(?P<u_uptime2>{UPTIME_BODY})s"
    r"|(?P<u_uptimemillis2>\d+)ms"
    r")\])?"
    r"(?:\[\d+\])?(?:\[\d+\])?"
    r"(?:\[(?P<u_level>trace|debug|info|warning|error)\s*\])?"
    r"(?:\[(?P<u_tags>[a-z0-9,. ]+?)\s*\])?"
    r"(?: GC\((?P<u_gc_id>\d+)\))?"
)

UNIFIED_LINE: re.Pattern[str] = re.compile(rf"^{DECORATOR}")

# ============================================================
# SIZES, DURATIONS, TIMES
# ============================================================

SIZE_BODY = r"\d+(?:[.,]\d+)?[BKMGbkmg]"


def size(name: str) -> str:
    """A memory size captured whole (value and unit) under `name`."""
    return rf"(?P<{name}>{SIZE_BODY})"


def occupancy(name: str) -> str:
    """before->after(space), e.g. 19136K->2112K(19136K)."""
    return rf"{size(name + '_before')}->{size(name + '_after')}\({size(name + '_space')}\)"


def g1_occupancy(name: str) -> str:
    """G1 before(space)->after(space), e.g. 24.0M(24.0M)->0.0B(13.0M)."""
    return (
        rf"{size(name + '_before')}\({SIZE_BODY}\)->"
        rf"{size(name + '_after')}\({size(name + '_space')}\)"
    )


ANY_OCCUPANCY = rf"{SIZE_BODY}->{SIZE_BODY}\({SIZE_BODY}\)"

# Unified metaspace: before[(committed)]->after(committed)
UNIFIED_METASPACE = (
    rf" Metaspace: {size('perm_before')}(?:\({SIZE_BODY}\))?->"
    rf"{size('perm_after')}\({size('perm_space')}\)"
)
UNIFIED_METASPACE_ANY = rf"Metaspace: {SIZE_BODY}(?:\({SIZE_BODY}\))?->{SIZE_BODY}\({SIZE_BODY}\)"

SECS_DURATION = r"(?P<duration>\d+[.,]\d+) secs"
MS_DURATION = r"(?P<duration_ms>\d+[.,]\d+) ?ms"

TIMES_LEGACY = (
    r" ?\[Times: user=(?P<user>-?\d+[.,]\d{2}) sys=(?P<sys>-?\d+[.,]\d{2}), "
    r"real=(?P<real>\d+[.,]\d{2}) secs\]"
)
TIMES_UNIFIED = (
    r" User=(?P<user>\d+[.,]\d{2})s Sys=(?P<sys>\d+[.,]\d{2})s Real=(?P<real>\d+[.,]\d{2})s"
)
TIMES_UNIFIED_ANY = r"User=\d+[.,]\d{2}s Sys=\d+[.,]\d{2}s Real=\d+[.,]\d{2}s"

UNIFIED_OTHER = r" Other: (?P<other>\d+[.,]\d+) ?ms"
HUMONGOUS_REGIONS = r" Humongous regions: \d+->\d+"
TO_SPACE_EXHAUSTED_UNIFIED = r"(?: To-space exhausted)?"

# ============================================================
# TRIGGERS
# ============================================================

TRIGGER_BODY = "|".join(
    re.escape(trigger.literal)
    for trigger in sorted(Trigger, key=lambda item: len(item.literal), reverse=True)
    if trigger.literal
)


def trigger(name: str = "trigger") -> str:
    return rf"(?P<{name}>{TRIGGER_BODY})"


G1_YOUNG_TRIGGER_BODY = "|".join(
    re.escape(item.literal)
    for item in (
        Trigger.G1_EVACUATION_PAUSE,
        Trigger.G1_HUMONGOUS_ALLOCATION,
        Trigger.G1_PREVENTIVE_COLLECTION,
    )
)

# ============================================================
# REFERENCE PROCESSING (-XX:+PrintReferenceGC)
# ============================================================

REFERENCE_GC_BLOCK: re.Pattern[str] = re.compile(
    rf"(?:{INNER_TIMESTAMP}\[(?:Soft|Weak|Final|Phantom|JNI Weak )Reference, "
    r"(?:\d+ refs, )*\d+[.,]\d+ secs\])+"
)
