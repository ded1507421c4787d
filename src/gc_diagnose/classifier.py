"""Log line classification.

Maps one logical log line to an EventKind and builds the typed event for it.
Classification is a pure function of the line: the first pattern in table
order whose substring guard and regex both match wins, and anything left
over is UNKNOWN.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, NamedTuple

from gc_diagnose.models import (
    BlockingEvent,
    CommandLineFlagsEvent,
    ConcurrentEvent,
    CpuTimes,
    EventKind,
    LogEvent,
    LogFileEvent,
    MemoryHeaderEvent,
    Occupancy,
    SafepointEvent,
    ThrowawayEvent,
    Trigger,
    UnifiedHeaderEvent,
    UnknownEvent,
    VmInfoEvent,
    VmWarningEvent,
)
from gc_diagnose.patterns import (
    DATESTAMP_BODY,
    DECORATOR,
    G1_YOUNG_TRIGGER_BODY,
    HUMONGOUS_REGIONS,
    INNER_TIMESTAMP,
    LEGACY_PREFIX,
    MS_DURATION,
    SECS_DURATION,
    SIZE_BODY,
    TIMES_LEGACY,
    TIMES_UNIFIED,
    TO_SPACE_EXHAUSTED_UNIFIED,
    UNIFIED_METASPACE,
    UNIFIED_OTHER,
    UPTIME_BODY,
    g1_occupancy,
    occupancy,
    size,
    trigger,
)
from gc_diagnose.units import (
    datetime_to_millis,
    micros_to_millis,
    millis_to_micros,
    nanos_to_micros,
    nanos_to_millis,
    parse_datestamp,
    parse_size_to_kb,
    secs_to_centis,
    secs_to_micros,
    secs_to_millis,
)

logger = logging.getLogger(__name__)

# Decorator without groups, for noise patterns that need no timestamp.
ANY_DECORATOR = r"(?:\[[^\]]+\])+(?: GC\(\d+\))?"

_END = r"\s*$"
_U = rf"^{DECORATOR}"


class EventPattern(NamedTuple):
    """One recognizer: kind, compiled regex and substring guards (any must be present)."""

    kind: EventKind
    pattern: re.Pattern[str]
    guards: tuple[str, ...] = ()


def _p(kind: EventKind, regex: str, *guards: str) -> EventPattern:
    return EventPattern(kind, re.compile(regex), guards)


# ============================================================
# RECOGNIZER FRAGMENTS
# ============================================================

_G1_UNIFIED_BODY = (
    rf"{TO_SPACE_EXHAUSTED_UNIFIED}(?:{UNIFIED_OTHER})?{TO_SPACE_EXHAUSTED_UNIFIED}"
    rf"(?:{HUMONGOUS_REGIONS})?(?:{UNIFIED_METASPACE})?{TO_SPACE_EXHAUSTED_UNIFIED}"
    rf" {occupancy('combined')} {MS_DURATION}(?:{TIMES_UNIFIED})?{_END}"
)

_UNIFIED_TAIL = rf"(?:{UNIFIED_METASPACE})? {occupancy('combined')} {MS_DURATION}(?:{TIMES_UNIFIED})?{_END}"

_G1_LEGACY_TAIL = (
    r"(?: \((?P<trigger2>to-space exhausted|to-space overflow)\))?"
    rf"(?: {occupancy('combined')})?, {SECS_DURATION}\]"
    r"(?:\[Ext Root Scanning \(ms\): Min: [\d.,]+, Avg: (?P<ext_root>\d+[.,]\d+),[^\]]*\])?"
    r"(?:\[Other: (?P<other>\d+[.,]\d+) ms\])?"
    rf"(?:\[Eden: {SIZE_BODY}\({SIZE_BODY}\)->{SIZE_BODY}\({SIZE_BODY}\) "
    rf"Survivors: {SIZE_BODY}->{SIZE_BODY} Heap: {g1_occupancy('heap')}\])?"
    rf"(?:{TIMES_LEGACY})?{_END}"
)

_LEGACY_PERM = r"\[(?:Metaspace|CMS Perm ?|PSPermGen|Perm ?): " + occupancy("perm") + r"\]"
_ICMS = r"(?P<icms> icms_dc=\d+ )?"

_SHENANDOAH_MODIFIERS = r"(?: \([a-z ]+\))*"

_SAFEPOINT_JDK17 = (
    rf"{_U} Safepoint \"(?P<operation>[^\"]+)\", Time since last: \d+ ns, "
    r"Reaching safepoint: \d+ ns, Cleanup: \d+ ns, At safepoint: \d+ ns, "
    rf"Total: (?P<total>\d+) ns{_END}"
)

# Safepoint line shape logged by JDK 17 and later (has a Cleanup phase).
SAFEPOINT_JDK17_PATTERN: re.Pattern[str] = re.compile(_SAFEPOINT_JDK17)

_UNIFIED_HEADER_MESSAGES = (
    r"Version: (?P<release>\S+) \(release\)",
    r"Using (?:G1|Serial|Parallel|Concurrent Mark Sweep|Shenandoah|The Z Garbage Collector)",
    r"Initializing The Z Garbage Collector",
    r"Min heap equals to max heap, disabling ShenandoahUncommit",
    r"Heuristics ergonomically sets .*",
    r"(?:CPUs|Memory|Large Page Support|NUMA Support|NUMA Nodes|Compressed Oops"
    r"|Heap Region Size|Heap Min Capacity|Heap Initial Capacity|Heap Max Capacity"
    r"|Pre-touch|Parallel Workers|Concurrent Workers|Concurrent Refinement Workers"
    r"|Periodic GC|CardTable entry size|Card Set container configuration"
    r"|Initialize Shenandoah heap|Regions|Humongous object threshold|Max TLAB size"
    r"|GC threads|Reference processing|Shenandoah heuristics|Soft Max Heap Size"
    r"|Address Space Type|Address Space Size|Heap Backing File|Heap Backing Filesystem"
    r"|Runtime Workers|Mode|Heuristics|Available space on backing filesystem"
    r"|Narrow klass base|Compressed class space mapped at|CDS archive\(s\) mapped at"
    r"|Compressed class space size|Medium Page Size|GC Workers|Initial Capacity"
    r"|Max Capacity|Min Capacity|Heap Region Count|Page Size|Uncommit|Uncommit Delay"
    r"|Probing address space for the highest valid bit)(?:: .*)?",
)


def _shenandoah(kind: EventKind, name: str) -> list[EventPattern]:
    """Unified and legacy recognizers for one Shenandoah pause."""
    return [
        _p(
            kind,
            rf"{_U} Pause {name}{_SHENANDOAH_MODIFIERS}(?: {occupancy('combined')})? "
            rf"{MS_DURATION}{_END}",
            "Pause",
        ),
        _p(
            kind,
            rf"^{LEGACY_PREFIX}\[Pause {name}{_SHENANDOAH_MODIFIERS}"
            rf"(?: {occupancy('combined')})?, {MS_DURATION}\](?: {_LEGACY_PERM})?{_END}",
            "[Pause",
        ),
    ]


# ============================================================
# PATTERN TABLE (order matters: first match wins)
# ============================================================

PATTERNS: list[EventPattern] = [
    # --- noise that must win over broader shapes ---
    _p(EventKind.BLANK_LINE, r"^\s*$"),
    _p(
        EventKind.METASPACE_UTILS_REPORT,
        rf"^{ANY_DECORATOR} (?:Usage:|Virtual space:|Chunk freelists:|Internal statistics:"
        r"|\s*(?:Non-[Cc]lass|[Cc]lass|Both):.*|\s+(?:reserved|committed|used|capacity|free"
        r"|waste)\b.*|MaxMetaspaceSize: .*|CompressedClassSpaceSize: .*"
        r"|Initial GC threshold: .*|Current GC threshold: .*|CDS: .*|\s+\d+ (?:chunks|blocks)\b.*)"
        rf"{_END}",
        "[",
    ),
    _p(
        EventKind.Z_STATS,
        rf"^{ANY_DECORATOR}\s+(?P<header>=== Garbage Collection Statistics =+){_END}",
        "Garbage Collection Statistics",
    ),
    _p(
        EventKind.Z_STATS,
        rf"^{ANY_DECORATOR}\s+(?:Last 10s\s+Last 10m\s+Last 10h\s+Total"
        r"|(?:Collector|Contention|Critical|Memory|Phase|Subphase|System|Old Pause|Old Phase"
        r"|Old Subphase|Young Pause|Young Phase|Young Subphase|Old Critical|Young Critical"
        r"|Old Memory|Young Memory|Old Contention|Young Contention)\w*: .*|={10,}.*)"
        rf"{_END}",
        "gc,stats",
    ),
    _p(EventKind.SHENANDOAH_STATS, rf"^{ANY_DECORATOR}\[gc,stats\s*\](?: .*)?$", "gc,stats"),
    _p(
        EventKind.SHENANDOAH_STATS,
        r"^(?:GC STATISTICS:|All times are wall-clock times.*|Concurrent phases are measured.*"
        r"|Pause phases are measured.*|  \"(?:gross|net)\" pauses include.*"
        r"|.*\((?:G|N)\)\s+\d+ us, .*|\s+\d+ of \d+ .*GCs.*|\s+\d+ Completed Concurrent GCs.*"
        r"|\s+\d+ (?:Degenerated|Full) GCs.*|\s+\d+ (?:invocations|caused by).*"
        r"|Under allocation pressure.*|Allocation pacing accrued:.*|\s+Pacer delays.*)"
        rf"{_END}",
    ),
    _p(
        EventKind.SHENANDOAH_TRIGGER,
        rf"^(?:{ANY_DECORATOR} |{INNER_TIMESTAMP})Trigger: .+$",
        "Trigger:",
    ),
    _p(
        EventKind.SHENANDOAH_CONSIDER_CLASS_UNLOADING_CONC_MARK,
        rf"^{ANY_DECORATOR} Consider -XX:\+ClassUnloadingWithConcurrentMark if large pause "
        r"times are observed on class-unloading sensitive workloads[ ]*$",
        "ClassUnloadingWithConcurrentMark",
    ),
    # --- headers and JVM facts ---
    _p(
        EventKind.HEADER_COMMAND_LINE_FLAGS,
        r"^CommandLine flags: (?P<options>.+?)\s*$",
        "CommandLine flags",
    ),
    _p(
        EventKind.HEADER_MEMORY,
        r"^Memory: \d+k page(?:, physical (?P<physical>\d+)k\((?P<physical_free>\d+)k free\))?"
        r"(?:, swap (?P<swap>\d+)k\((?P<swap_free>\d+)k free\))?\s*$",
        "Memory:",
    ),
    _p(
        EventKind.VM_WARNING,
        r"^(?:OpenJDK|Java HotSpot\(TM\)) (?:64|32)-Bit (?:Server|Client) VM warning: "
        r"(?P<message>.*?)\s*$",
        "VM warning",
    ),
    _p(
        EventKind.HEADER_VM_INFO,
        r"^(?:Java HotSpot\(TM\)|OpenJDK) (?P<bits>64|32)-Bit (?:Server|Client) VM \([^)]*\) "
        r"for (?P<os>[a-z]+)-(?P<arch>[a-z0-9_]+) JRE \((?:[^)]*\) \()?(?P<release>[^)]+)\), "
        r"built on (?P<build_date>[A-Z][a-z]{2} +\d{1,2} \d{4} \d{2}:\d{2}:\d{2}) by .*$",
        "JRE (",
    ),
    _p(
        EventKind.UNIFIED_HEADER,
        rf"{_U} (?P<message>{'|'.join(_UNIFIED_HEADER_MESSAGES)}){_END}",
        "[",
    ),
    _p(
        EventKind.LOG_FILE,
        r"^(?P<date>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) GC log file "
        r"(?P<action>created|has reached the maximum size\. Saved as) (?P<path>\S.*?)\s*$",
        "GC log file",
    ),
    _p(
        EventKind.GC_OVERHEAD_LIMIT,
        rf"^{INNER_TIMESTAMP}\s*GC time (?:would exceed|is exceeding) GCTimeLimit of \d{{1,3}}%"
        rf"{_END}",
        "GCTimeLimit",
    ),
    _p(
        EventKind.GC_LOCKER_SCAVENGE_FAILED,
        r"^GC locker: Trying a full collection because scavenge failed\s*$",
        "GC locker",
    ),
    # --- safepoints ---
    _p(EventKind.UNIFIED_SAFEPOINT, _SAFEPOINT_JDK17, "Safepoint \""),
    _p(
        EventKind.UNIFIED_SAFEPOINT,
        rf"{_U} Safepoint \"(?P<operation>[^\"]+)\", Time since last: \d+ ns, "
        rf"Reaching safepoint: \d+ ns, At safepoint: \d+ ns, Total: (?P<total>\d+) ns{_END}",
        "Safepoint \"",
    ),
    _p(
        EventKind.APPLICATION_STOPPED_TIME,
        rf"^(?:{LEGACY_PREFIX}|{DECORATOR} )Total time for which application threads were "
        r"stopped: (?P<stopped>\d+[.,]\d+) seconds"
        rf"(?:, Stopping threads took: \d+[.,]\d+ seconds)?{_END}",
        "Total time for which",
    ),
    _p(
        EventKind.APPLICATION_CONCURRENT_TIME,
        rf"^(?:{ANY_DECORATOR} |{INNER_TIMESTAMP})Application time: \d+[.,]\d+ seconds{_END}",
        "Application time",
    ),
    # --- unified G1 ---
    _p(
        EventKind.UNIFIED_G1_YOUNG_INITIAL_MARK,
        rf"{_U} Pause (?:Young \((?:Concurrent Start|Initial Mark)\)|Initial Mark) "
        rf"\({trigger()}\){_G1_UNIFIED_BODY}",
        "Pause",
    ),
    _p(
        EventKind.UNIFIED_G1_YOUNG_PREPARE_MIXED,
        rf"{_U} Pause Young \(Prepare Mixed\) \({trigger()}\){_G1_UNIFIED_BODY}",
        "Prepare Mixed",
    ),
    _p(
        EventKind.UNIFIED_G1_MIXED_PAUSE,
        rf"{_U} Pause (?:Young \(Mixed\)|Mixed) \({trigger()}\){_G1_UNIFIED_BODY}",
        "Mixed",
    ),
    _p(
        EventKind.UNIFIED_G1_YOUNG_PAUSE,
        rf"{_U} Pause Young (?:\(Normal\) \({trigger()}\)"
        rf"|\((?P<g1_trigger>{G1_YOUNG_TRIGGER_BODY})\)){_G1_UNIFIED_BODY}",
        "Pause Young",
    ),
    _p(
        EventKind.UNIFIED_G1_CLEANUP,
        rf"{_U} Pause Cleanup {occupancy('combined')} {MS_DURATION}(?:{TIMES_UNIFIED})?{_END}",
        "Pause Cleanup",
    ),
    _p(
        EventKind.UNIFIED_REMARK,
        rf"{_U} Pause Remark {occupancy('combined')} {MS_DURATION}(?:{TIMES_UNIFIED})?{_END}",
        "Pause Remark",
    ),
    _p(
        EventKind.G1_FULL_GC_PARALLEL,
        rf"{_U} Pause Full \({trigger()}\){HUMONGOUS_REGIONS}{_UNIFIED_TAIL}",
        "Humongous regions",
    ),
    _p(
        EventKind.G1_FULL_GC_PARALLEL,
        rf"{_U} Pause Full \((?P<g1_trigger>G1 Compaction Pause|G1 Humongous Allocation"
        rf"|G1 Evacuation Pause)\){_UNIFIED_TAIL}",
        "Pause Full (G1",
    ),
    # --- unified serial, parallel, CMS ---
    _p(
        EventKind.UNIFIED_SERIAL_NEW,
        rf"{_U} Pause Young \({trigger()}\) DefNew: {occupancy('young')} "
        rf"Tenured: {occupancy('old')}{_UNIFIED_TAIL}",
        "DefNew",
    ),
    _p(
        EventKind.UNIFIED_SERIAL_OLD,
        rf"{_U} Pause Full \({trigger()}\) DefNew: {occupancy('young')} "
        rf"Tenured: {occupancy('old')}{_UNIFIED_TAIL}",
        "Tenured",
    ),
    _p(
        EventKind.UNIFIED_PARALLEL_SCAVENGE,
        rf"{_U} Pause Young \({trigger()}\) PSYoungGen: {occupancy('young')} "
        rf"(?:ParOldGen|PSOldGen): {occupancy('old')}{_UNIFIED_TAIL}",
        "PSYoungGen",
    ),
    _p(
        EventKind.UNIFIED_PARALLEL_COMPACTING_OLD,
        rf"{_U} Pause Full \({trigger()}\) PSYoungGen: {occupancy('young')} "
        rf"ParOldGen: {occupancy('old')}{_UNIFIED_TAIL}",
        "ParOldGen",
    ),
    _p(
        EventKind.UNIFIED_PAR_NEW,
        rf"{_U} Pause Young \({trigger()}\) ParNew: {occupancy('young')} "
        rf"CMS: {occupancy('old')}{_UNIFIED_TAIL}",
        "ParNew",
    ),
    _p(
        EventKind.UNIFIED_CMS_INITIAL_MARK,
        rf"{_U} Pause Initial Mark {occupancy('combined')} {MS_DURATION}"
        rf"(?:{TIMES_UNIFIED})?{_END}",
        "Pause Initial Mark",
    ),
    _p(EventKind.UNIFIED_YOUNG, rf"{_U} Pause Young \({trigger()}\){_UNIFIED_TAIL}", "Pause Young"),
    _p(EventKind.UNIFIED_OLD, rf"{_U} Pause Full \({trigger()}\){_UNIFIED_TAIL}", "Pause Full"),
    # --- Shenandoah ---
    *_shenandoah(EventKind.SHENANDOAH_INIT_MARK, "Init Mark"),
    *_shenandoah(EventKind.SHENANDOAH_FINAL_MARK, "Final Mark"),
    *_shenandoah(EventKind.SHENANDOAH_INIT_UPDATE, "Init Update Refs"),
    *_shenandoah(EventKind.SHENANDOAH_FINAL_UPDATE, "Final Update Refs"),
    *_shenandoah(EventKind.SHENANDOAH_DEGENERATED_GC, r"Degenerated GC \([A-Za-z ]+\)"),
    *_shenandoah(EventKind.SHENANDOAH_FULL_GC, "Full"),
    _p(
        EventKind.SHENANDOAH_CONCURRENT,
        rf"{_U} Concurrent [a-z][a-z ]*?(?: \([a-z ,]+\))*(?: {occupancy('combined')})? "
        rf"{MS_DURATION}{_END}",
        "Concurrent",
    ),
    _p(
        EventKind.SHENANDOAH_CONCURRENT,
        rf"^{LEGACY_PREFIX}\[Concurrent [a-z][a-z ]*?(?: \([a-z ,]+\))*"
        rf"(?: {occupancy('combined')})?, {MS_DURATION}\](?: {_LEGACY_PERM})?{_END}",
        "[Concurrent",
    ),
    # --- Z ---
    _p(
        EventKind.Z_MARK_START,
        rf"{_U} (?:[yo]: )?Pause Mark Start(?: \(Major\))? {MS_DURATION}{_END}",
        "Pause Mark Start",
    ),
    _p(
        EventKind.Z_MARK_END,
        rf"{_U} (?:[yo]: )?Pause Mark End(?: \(Major\))? {MS_DURATION}{_END}",
        "Pause Mark End",
    ),
    _p(
        EventKind.Z_RELOCATE_START,
        rf"{_U} (?:[yo]: )?Pause Relocate Start(?: \(Major\))? {MS_DURATION}{_END}",
        "Pause Relocate Start",
    ),
    _p(
        EventKind.Z_GARBAGE_COLLECTION,
        rf"{_U} (?:Major |Minor )?(?:Garbage )?Collection \({trigger()}\) "
        rf"{SIZE_BODY}\(\d+%\)->{SIZE_BODY}\(\d+%\).*$",
        "Collection (",
    ),
    _p(
        EventKind.UNIFIED_CONCURRENT,
        rf"{_U} Concurrent [A-Z][A-Za-z ]+?(?: \([\d.,s ]+\))?(?: {MS_DURATION})?{_END}",
        "Concurrent",
    ),
    # --- legacy G1 ---
    _p(
        EventKind.G1_YOUNG_INITIAL_MARK,
        rf"^{LEGACY_PREFIX}\[GC pause (?:\({trigger()}\) )?\(young\) \(initial-mark\)"
        rf"{_G1_LEGACY_TAIL}",
        "initial-mark",
    ),
    _p(
        EventKind.G1_MIXED_PAUSE,
        rf"^{LEGACY_PREFIX}\[GC pause (?:\({trigger()}\) )?\(mixed\){_G1_LEGACY_TAIL}",
        "(mixed)",
    ),
    _p(
        EventKind.G1_YOUNG_PAUSE,
        rf"^{LEGACY_PREFIX}\[GC pause (?:\({trigger()}\) )?\(young\){_G1_LEGACY_TAIL}",
        "(young)",
    ),
    _p(
        EventKind.G1_REMARK,
        rf"^{LEGACY_PREFIX}\[GC remark(?: .*?)?, {SECS_DURATION}\](?:{TIMES_LEGACY})?{_END}",
        "GC remark",
    ),
    _p(
        EventKind.G1_CLEANUP,
        rf"^{LEGACY_PREFIX}\[GC cleanup {occupancy('combined')}, {SECS_DURATION}\]"
        rf"(?:{TIMES_LEGACY})?{_END}",
        "GC cleanup",
    ),
    _p(
        EventKind.G1_FULL_GC_SERIAL,
        rf"^{LEGACY_PREFIX}\[Full GC (?:\({trigger()}\) )? *{occupancy('combined')}, "
        rf"{SECS_DURATION}\]\[Eden: {SIZE_BODY}\({SIZE_BODY}\)->{SIZE_BODY}\({SIZE_BODY}\) "
        rf"Survivors: {SIZE_BODY}->{SIZE_BODY} Heap: {g1_occupancy('heap')}\]"
        rf"(?:, {_LEGACY_PERM})?(?:{TIMES_LEGACY})?{_END}",
        "[Eden:",
    ),
    _p(
        EventKind.G1_CONCURRENT,
        rf"^{LEGACY_PREFIX}\[GC concurrent-[a-z-]+?(?:-start|-end, \d+[.,]\d+ secs"
        rf"|: \d+[.,]\d+ secs|-abort|-reset-for-overflow)?\]{_END}",
        "GC concurrent-",
    ),
    # --- CMS ---
    _p(
        EventKind.PAR_NEW,
        rf"^{LEGACY_PREFIX}\[GC(?: \({trigger()}\))? {INNER_TIMESTAMP}\[ParNew: "
        rf"{occupancy('young')}, \d+[.,]\d+ secs\] {occupancy('combined')}{_ICMS}, "
        rf"{SECS_DURATION}\](?:{TIMES_LEGACY})?{_END}",
        "[ParNew:",
    ),
    _p(
        EventKind.CMS_INITIAL_MARK,
        rf"^{LEGACY_PREFIX}\[GC(?: \({trigger()}\))? \[1 CMS-initial-mark: "
        rf"{size('old_before')}\({size('old_space')}\)\] "
        rf"{size('combined_before')}\({size('combined_space')}\){_ICMS}, {SECS_DURATION}\]"
        rf"(?:{TIMES_LEGACY})?{_END}",
        "CMS-initial-mark",
    ),
    _p(
        EventKind.CMS_REMARK,
        rf"^{LEGACY_PREFIX}\[GC(?: \({trigger()}\))? ?\[YG occupancy: .+\[1 CMS-remark: "
        rf"{size('old_before')}\({size('old_space')}\)\] "
        rf"{size('combined_before')}\({size('combined_space')}\){_ICMS}, {SECS_DURATION}\]"
        rf"(?:{TIMES_LEGACY})?{_END}",
        "CMS-remark",
    ),
    _p(
        EventKind.CMS_CONCURRENT,
        rf"^(?: CMS: abort preclean due to time )?{LEGACY_PREFIX}\[CMS-concurrent-[a-z-]+?"
        rf"(?:-start\]|: \d+[.,]\d+/\d+[.,]\d+ secs\](?:{TIMES_LEGACY})?){_END}",
        "CMS-concurrent-",
    ),
    _p(
        EventKind.CMS_SERIAL_OLD,
        rf"^{LEGACY_PREFIX}\[(?:Full GC|GC)(?: \({trigger()}\))? {INNER_TIMESTAMP}"
        rf"(?:\[ParNew(?: \((?P<trigger2>promotion failed)\))?: {occupancy('young')}, "
        rf"\d+[.,]\d+ secs\]{INNER_TIMESTAMP})?"
        r"\[CMS(?: ?\((?P<trigger3>concurrent mode failure|concurrent mode interrupted)\))?: "
        rf"{occupancy('old')}, \d+[.,]\d+ secs\] {occupancy('combined')}, {_LEGACY_PERM}"
        rf"{_ICMS}, {SECS_DURATION}\](?:{TIMES_LEGACY})?{_END}",
        "[CMS",
    ),
    # --- parallel ---
    _p(
        EventKind.PARALLEL_SCAVENGE,
        rf"^{LEGACY_PREFIX}\[GC(?:--)?(?: \({trigger()}\))?(?: --)? ?\[PSYoungGen: "
        rf"{occupancy('young')}\] {occupancy('combined')}, {SECS_DURATION}\]"
        rf"(?:{TIMES_LEGACY})?{_END}",
        "PSYoungGen",
    ),
    _p(
        EventKind.PARALLEL_COMPACTING_OLD,
        rf"^{LEGACY_PREFIX}\[Full GC(?: \({trigger()}\))? \[PSYoungGen: {occupancy('young')}\] "
        rf"\[ParOldGen: {occupancy('old')}\] {occupancy('combined')},? {_LEGACY_PERM}, "
        rf"{SECS_DURATION}\](?:{TIMES_LEGACY})?{_END}",
        "ParOldGen",
    ),
    _p(
        EventKind.PARALLEL_SERIAL_OLD,
        rf"^{LEGACY_PREFIX}\[Full GC(?: \({trigger()}\))? \[PSYoungGen: {occupancy('young')}\] "
        rf"\[PSOldGen: {occupancy('old')}\] {occupancy('combined')},? {_LEGACY_PERM}, "
        rf"{SECS_DURATION}\](?:{TIMES_LEGACY})?{_END}",
        "PSOldGen",
    ),
    # --- serial ---
    _p(
        EventKind.SERIAL_NEW,
        rf"^{LEGACY_PREFIX}\[GC(?: \({trigger()}\))? {INNER_TIMESTAMP}\[DefNew: "
        rf"{occupancy('young')}, \d+[.,]\d+ secs\] {occupancy('combined')}, {SECS_DURATION}\]"
        rf"(?:{TIMES_LEGACY})?{_END}",
        "[DefNew:",
    ),
    _p(
        EventKind.SERIAL_OLD,
        rf"^{LEGACY_PREFIX}\[(?:Full GC|GC)(?: \({trigger()}\))? {INNER_TIMESTAMP}"
        rf"(?:\[DefNew: {occupancy('young')}, \d+[.,]\d+ secs\]{INNER_TIMESTAMP})?"
        rf"\[Tenured: {occupancy('old')}, \d+[.,]\d+ secs\] {occupancy('combined')}, "
        rf"{_LEGACY_PERM}, {SECS_DURATION}\](?:{TIMES_LEGACY})?{_END}",
        "[Tenured:",
    ),
    # --- collector not identified (-XX:+PrintGC only) ---
    _p(
        EventKind.VERBOSE_GC_OLD,
        rf"^{LEGACY_PREFIX}\[Full GC(?: \({trigger()}\))? +{occupancy('combined')}, "
        rf"{SECS_DURATION}\]{_END}",
        "[Full GC",
    ),
    _p(
        EventKind.VERBOSE_GC_YOUNG,
        rf"^{LEGACY_PREFIX}\[GC(?: \({trigger()}\))?(?:--)? +{occupancy('combined')}, "
        rf"{SECS_DURATION}\]{_END}",
        "[GC",
    ),
    # --- noise ---
    _p(EventKind.UNIFIED_BLANK_LINE, rf"^{ANY_DECORATOR}\s*$", "["),
    _p(
        EventKind.HEAP_AT_GC,
        rf"^(?:{ANY_DECORATOR} ?)?(?:\{{Heap (?:before|after) GC invocations=\d+ \(full \d+\):"
        r"| ?(?:PSYoungGen|ParOldGen|PSOldGen|PSPermGen|par new generation|def new generation"
        r"|tenured generation|concurrent mark-sweep generation|concurrent-mark-sweep perm gen"
        r"|garbage-first heap|Metaspace|class space|compacting perm gen|Shenandoah Heap"
        r"|ZHeap)\s+(?:total|used|reserved).*"
        r"|\s+(?:eden|from|to|object|the|ro|rw|class) space.*|\s+region size \d+K.*"
        r"|\s+\d+ x \d+ K regions.*|\}|Heap)\s*$",
    ),
    _p(
        EventKind.TENURING_DISTRIBUTION,
        r"^(?:Desired survivor size \d+ bytes, new threshold \d+ \(max(?: threshold)? \d+\)"
        r"|- age\s+\d+:\s+\d+ bytes,\s+\d+ total)\s*$",
    ),
    _p(
        EventKind.CLASS_UNLOADING,
        rf"^{INNER_TIMESTAMP}\[Unloading class .+?\]\s*$",
        "Unloading class",
    ),
    _p(
        EventKind.FLS_STATISTICS,
        r"^(?:Statistics for BinaryTreeDictionary:|Statistics for IndexedFreeLists:|-{10,}"
        r"|Total Free Space: -?\d+|Max\s+Chunk Size: -?\d+|Number of Blocks: \d+"
        r"|Av\.\s+Block\s+Size: \d+|Tree\s+Height: \d+|Before GC:|After GC:)\s*$",
    ),
    _p(
        EventKind.CLASS_HISTOGRAM,
        rf"^(?:{INNER_TIMESTAMP}\[Class Histogram(?: \((?:before|after) full gc\))?:?"
        r"| num\s+#instances\s+#bytes\s+class name(?: \(module\))?"
        r"|\s*\d+:\s+\d+\s+\d+\s+\S.*|Total\s+\d+\s+\d+|, \d+[.,]\d+ secs\])\s*$",
    ),
    _p(
        EventKind.THREAD_DUMP,
        r"^(?:Full thread dump .*|\"[^\"]+\" .*(?:tid|nid)=0x[0-9a-f]+.*"
        r"|\s+java\.lang\.Thread\.State: .*|\s+at [\w$.<>/]+\(.*\)"
        r"|\s+- (?:locked|waiting on|waiting to lock|parking to wait for) <0x[0-9a-f]+>.*"
        r"|JNI global references: \d+.*)\s*$",
    ),
    _p(
        EventKind.GC_LOCKER_RETRY,
        rf"^(?:{ANY_DECORATOR} )?Retried waiting for GCLocker too often allocating \d+ words"
        rf"{_END}",
        "GCLocker",
    ),
    _p(
        EventKind.OOME_METASPACE,
        r"^.*(?:java\.lang\.OutOfMemoryError: (?:Metaspace|Compressed class space)"
        r"|Metaspace \((?:data|class)\) allocation failed for \d+ words).*$",
        "Metaspace",
        "class space",
    ),
    _p(
        EventKind.HEAP_ADDRESS,
        rf"^(?:{ANY_DECORATOR} )?[Hh]eap address: 0x[0-9a-f]+, size: \d+ MB, "
        r"Compressed Oops mode: .+$",
        "eap address",
    ),
    _p(
        EventKind.APPLICATION_LOGGING,
        r"^(?:\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}(?:[,.]\d{3})? )?(?:\[[^\]]+\] )?"
        r"(?:TRACE|DEBUG|INFO|WARN|WARNING|ERROR|FATAL|SEVERE)\b.*$"
        r"|^Exception in thread \".+\" .*$",
    ),
]

_PATTERNS_BY_KIND: dict[EventKind, list[EventPattern]] = {}
for _entry in PATTERNS:
    _PATTERNS_BY_KIND.setdefault(_entry.kind, []).append(_entry)

_LEADING_TIMESTAMP: re.Pattern[str] = re.compile(
    rf"^(?:{DECORATOR}|{LEGACY_PREFIX})"
)
_RELEASE_LEGACY: re.Pattern[str] = re.compile(r"^1\.(?P<major>\d+)\.\d+(?:_(?P<minor>\d+))?")
_RELEASE_MODERN: re.Pattern[str] = re.compile(r"^(?P<major>\d+)(?:\.\d+\.(?P<minor>\d+))?")
_ERRNO: re.Pattern[str] = re.compile(r"errno=(?P<errno>\d+)")
_DATESTAMP_ONLY_LINE: re.Pattern[str] = re.compile(
    rf"^(?:\[{DATESTAMP_BODY}\](?!\[(?:{UPTIME_BODY}s|\d+ms)\])|{DATESTAMP_BODY}: (?!{UPTIME_BODY}: ))"
)

# Cause groups in precedence order: the most specific cause wins.
_TRIGGER_GROUPS = ("trigger2", "trigger3", "trigger", "g1_trigger")

# ============================================================
# CLASSIFICATION
# ============================================================


def _match(line: str) -> tuple[EventPattern, re.Match[str]] | None:
    for entry in PATTERNS:
        # Substring guard: only run the regex when a guard literal is present
        if entry.guards and not any(guard in line for guard in entry.guards):
            continue
        if match := entry.pattern.match(line):
            return entry, match
    return None


def classify(line: str) -> EventKind:
    """Identify the event kind of one logical log line (total: never fails)."""
    found = _match(line)
    return found[0].kind if found else EventKind.UNKNOWN


def is_throwaway(kind: EventKind) -> bool:
    return kind.is_throwaway


def is_reportable(kind: EventKind) -> bool:
    return kind.is_reportable


def is_blocking(kind: EventKind) -> bool:
    return kind.is_blocking


def is_datestamp_only(line: str) -> bool:
    """True when the line carries a datestamp but no uptime."""
    return bool(_DATESTAMP_ONLY_LINE.match(line))


def leading_timestamp(line: str | None) -> int:
    """Uptime (ms) a line starts with, or 0 when it has none."""
    if not line:
        return 0
    match = _LEADING_TIMESTAMP.match(line)
    if not match:
        return 0
    timestamp, _, _ = _resolve_time(match)
    return timestamp or 0


def parse_log_line(line: str, prior_line: str | None = None) -> LogEvent:
    """Classify one logical line and build its typed event.

    Args:
        line: A logical log line (after normalization)
        prior_line: The previous logical line, for events logged without a timestamp

    Returns:
        The typed event; UnknownEvent when nothing matches or the fields are malformed
    """
    found = _match(line)
    if found is None:
        logger.debug("No pattern matched: %r", line)
        return UnknownEvent(kind=EventKind.UNKNOWN, log_entry=line)
    entry, match = found
    return _build(entry.kind, match, line, prior_line)


def parse(kind: EventKind, line: str, prior_line: str | None = None) -> LogEvent:
    """Build the event for a line already classified as `kind`.

    Raises:
        ValueError: If no recognizer exists for `kind`
    """
    if kind is EventKind.UNKNOWN:
        return UnknownEvent(kind=kind, log_entry=line)
    entries = _PATTERNS_BY_KIND.get(kind)
    if not entries:
        raise ValueError(f"No recognizer for event kind: {kind.value}")
    for entry in entries:
        if match := entry.pattern.match(line):
            return _build(kind, match, line, prior_line)
    return UnknownEvent(kind=EventKind.UNKNOWN, log_entry=line)


def _build(kind: EventKind, match: re.Match[str], line: str, prior_line: str | None) -> LogEvent:
    builder = _BUILDERS.get(kind) or _default_builder(kind)
    try:
        return builder(kind, match, line, prior_line)
    except ValueError as e:
        logger.debug("Could not build %s event from %r: %s", kind.value, line, e)
        return UnknownEvent(kind=EventKind.UNKNOWN, log_entry=line)


# ============================================================
# FIELD EXTRACTION
# ============================================================


def _resolve_time(match: re.Match[str]) -> tuple[int | None, datetime | None, bool]:
    """Return (timestamp ms, datestamp, datestamp_only) from the decorator groups."""
    groups = match.groupdict()
    timestamp: int | None = None
    uptime = groups.get("uptime") or groups.get("u_uptime") or groups.get("u_uptime2")
    if uptime:
        timestamp = secs_to_millis(uptime)
    elif millis := groups.get("u_uptimemillis") or groups.get("u_uptimemillis2"):
        timestamp = int(millis)

    datestamp_text = groups.get("datestamp") or groups.get("u_datestamp")
    datestamp = parse_datestamp(datestamp_text) if datestamp_text else None
    if timestamp is None and datestamp is not None:
        return datetime_to_millis(datestamp), datestamp, True
    return timestamp, datestamp, False


def _is_unified(match: re.Match[str]) -> bool:
    groups = match.groupdict()
    return any(groups.get(name) for name in ("u_datestamp", "u_uptime", "u_uptimemillis"))


def _occupancy(groups: dict[str, str | None], name: str) -> Occupancy | None:
    before = groups.get(f"{name}_before")
    if before is None:
        return None
    after = groups.get(f"{name}_after") or before
    space = groups.get(f"{name}_space")
    return Occupancy(
        before=parse_size_to_kb(before),
        after=parse_size_to_kb(after),
        space=parse_size_to_kb(space) if space else 0,
    )


def derive_old_occupancy(combined: Occupancy, young: Occupancy) -> Occupancy:
    """Old generation as heap minus young, clamped to prevent negatives from corrupted data."""
    return Occupancy(
        before=max(0, combined.before - young.before),
        after=max(0, combined.after - young.after),
        space=max(0, combined.space - young.space),
    )


def _trigger(kind: EventKind, groups: dict[str, str | None]) -> Trigger | None:
    for name in _TRIGGER_GROUPS:
        if text := groups.get(name):
            return Trigger.from_literal(text)
    return Trigger.NONE if kind.traits.trigger else None


def _times(groups: dict[str, str | None]) -> CpuTimes | None:
    user, sys_, real = groups.get("user"), groups.get("sys"), groups.get("real")
    if user is None or sys_ is None or real is None:
        return None
    return CpuTimes(user=secs_to_centis(user), sys=secs_to_centis(sys_), real=secs_to_centis(real))


# ============================================================
# BUILDERS
# ============================================================

Builder = Callable[[EventKind, "re.Match[str]", str, "str | None"], LogEvent]


def _build_blocking(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    groups = match.groupdict()
    if groups.get("duration"):
        duration = secs_to_micros(groups["duration"])
    elif groups.get("duration_ms"):
        duration = millis_to_micros(groups["duration_ms"])
    else:
        raise ValueError("no duration")

    other_time = millis_to_micros(groups["other"]) if groups.get("other") else None
    ext_root = millis_to_micros(groups["ext_root"]) if groups.get("ext_root") else None
    times = _times(groups)

    timestamp, datestamp, datestamp_only = _resolve_time(match)
    if timestamp is None:
        timestamp = leading_timestamp(prior_line)
    elif _is_unified(match) and "gc,start" not in (groups.get("u_tags") or "") and times is None:
        # Unified logging stamps the end of the pause; uptime floors at 0
        timestamp = max(0, timestamp - micros_to_millis(duration))

    if kind.traits.other_in_duration and other_time is not None:
        duration += other_time

    combined = _occupancy(groups, "combined") or _occupancy(groups, "heap")
    young = _occupancy(groups, "young")
    old = _occupancy(groups, "old")
    if old is None and combined is not None and young is not None:
        old = derive_old_occupancy(combined, young)

    trigger_value = _trigger(kind, groups)
    to_space = trigger_value in (Trigger.TO_SPACE_EXHAUSTED, Trigger.TO_SPACE_OVERFLOW) or (
        "To-space exhausted" in line
    )

    return BlockingEvent(
        kind=kind,
        log_entry=line,
        timestamp=timestamp,
        datestamp=datestamp,
        datestamp_only=datestamp_only,
        duration=duration,
        trigger=trigger_value,
        combined=combined,
        young=young,
        old=old,
        perm=_occupancy(groups, "perm"),
        times=times,
        other_time=other_time,
        ext_root_scanning_time=ext_root,
        to_space_exhausted=to_space,
        class_unloading="[class unloading" in line,
        incremental_mode=bool(groups.get("icms")),
    )


def _build_concurrent(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    groups = match.groupdict()
    timestamp, datestamp, datestamp_only = _resolve_time(match)
    duration = millis_to_micros(groups["duration_ms"]) if groups.get("duration_ms") else None
    return ConcurrentEvent(
        kind=kind,
        log_entry=line,
        timestamp=timestamp if timestamp is not None else leading_timestamp(prior_line),
        datestamp=datestamp,
        datestamp_only=datestamp_only,
        trigger=_trigger(kind, groups),
        combined=_occupancy(groups, "combined"),
        perm=_occupancy(groups, "perm"),
        duration=duration,
    )


def _build_stopped_time(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    timestamp, datestamp, datestamp_only = _resolve_time(match)
    if timestamp is None:
        # Logged without a stamp: it belongs to the preceding line's moment
        timestamp = leading_timestamp(prior_line)
    return SafepointEvent(
        kind=kind,
        log_entry=line,
        timestamp=timestamp,
        datestamp=datestamp,
        datestamp_only=datestamp_only,
        duration=secs_to_micros(match.group("stopped")),
    )


def _build_unified_safepoint(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    total = int(match.group("total"))
    timestamp, datestamp, datestamp_only = _resolve_time(match)
    if timestamp is None:
        timestamp = 0
    elif not datestamp_only:
        timestamp = max(0, timestamp - nanos_to_millis(total))
    return SafepointEvent(
        kind=kind,
        log_entry=line,
        timestamp=timestamp,
        datestamp=datestamp,
        datestamp_only=datestamp_only,
        duration=nanos_to_micros(total),
        total_nanos=total,
        operation=match.group("operation"),
    )


def _build_command_line_flags(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    return CommandLineFlagsEvent(kind=kind, log_entry=line, options=match.group("options"))


def _build_memory_header(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    groups = match.groupdict()
    return MemoryHeaderEvent(
        kind=kind,
        log_entry=line,
        physical_memory_kb=int(groups.get("physical") or 0),
        physical_memory_free_kb=int(groups.get("physical_free") or 0),
        swap_kb=int(groups.get("swap") or 0),
        swap_free_kb=int(groups.get("swap_free") or 0),
    )


def parse_release(release: str) -> tuple[int, int]:
    """JDK (major, update) from a release string like 1.8.0_242-b08 or 17.0.8+7."""
    if legacy := _RELEASE_LEGACY.match(release):
        return int(legacy.group("major")), int(legacy.group("minor") or 0)
    if modern := _RELEASE_MODERN.match(release):
        return int(modern.group("major")), int(modern.group("minor") or 0)
    return -1, -1


def _build_vm_info(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    release = match.group("release")
    major, minor = parse_release(release)
    build_text = " ".join(match.group("build_date").split())
    return VmInfoEvent(
        kind=kind,
        log_entry=line,
        version_major=major,
        version_minor=minor,
        is_32_bit=match.group("bits") == "32",
        arch=match.group("arch"),
        build_date=datetime.strptime(build_text, "%b %d %Y %H:%M:%S"),
        release_string=release,
    )


def _build_unified_header(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    timestamp, datestamp, datestamp_only = _resolve_time(match)
    release = match.group("release")
    major, minor = parse_release(release) if release else (None, None)
    return UnifiedHeaderEvent(
        kind=kind,
        log_entry=line,
        timestamp=timestamp or 0,
        datestamp=datestamp,
        datestamp_only=datestamp_only,
        version_major=major,
        version_minor=minor,
        release_string=release,
        message=match.group("message"),
    )


def _build_log_file(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    return LogFileEvent(
        kind=kind,
        log_entry=line,
        created=match.group("action") == "created",
        file_date=datetime.strptime(match.group("date"), "%Y-%m-%d %H:%M:%S"),
    )


def _build_vm_warning(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    errno = _ERRNO.search(line)
    return VmWarningEvent(
        kind=kind,
        log_entry=line,
        message=match.group("message"),
        errno=errno.group("errno") if errno else None,
    )


def _build_plain(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    timestamp, datestamp, datestamp_only = _resolve_time(match)
    return LogEvent(
        kind=kind,
        log_entry=line,
        timestamp=timestamp or 0,
        datestamp=datestamp,
        datestamp_only=datestamp_only,
    )


def _build_throwaway(
    kind: EventKind, match: re.Match[str], line: str, prior_line: str | None
) -> LogEvent:
    return ThrowawayEvent(
        kind=kind, log_entry=line, header=bool(match.groupdict().get("header"))
    )


def _default_builder(kind: EventKind) -> Builder:
    if kind.is_blocking:
        return _build_blocking
    if kind.is_throwaway:
        return _build_throwaway
    if kind.collector is not None:
        return _build_concurrent
    return _build_plain


_BUILDERS: dict[EventKind, Builder] = {
    EventKind.APPLICATION_STOPPED_TIME: _build_stopped_time,
    EventKind.UNIFIED_SAFEPOINT: _build_unified_safepoint,
    EventKind.HEADER_COMMAND_LINE_FLAGS: _build_command_line_flags,
    EventKind.HEADER_MEMORY: _build_memory_header,
    EventKind.HEADER_VM_INFO: _build_vm_info,
    EventKind.UNIFIED_HEADER: _build_unified_header,
    EventKind.LOG_FILE: _build_log_file,
    EventKind.VM_WARNING: _build_vm_warning,
}
