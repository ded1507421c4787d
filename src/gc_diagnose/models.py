"""Domain models: event kinds, triggers, findings and typed event variants."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Iterable, Iterator, Literal, NamedTuple, Protocol, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from gc_diagnose.units import (
    CentisValue,
    KilobytesValue,
    MicrosValue,
    MillisValue,
    calc_parallelism,
    micros_to_millis,
)

# ============================================================
# TYPE ALIASES
# ============================================================

FindingLevel: TypeAlias = Literal["error", "warn", "info"]
AllocationType: TypeAlias = Literal["HIGH", "AVG", "MAX", "MIN"]

# ============================================================
# ERRORS
# ============================================================


class TimeWarpError(Exception):
    """A blocking event arrived with a timestamp earlier than its predecessor."""

    def __init__(self, prior_entry: str, current_entry: str) -> None:
        self.prior_entry = prior_entry
        self.current_entry = current_entry
        super().__init__(f"Logging reversed: \n{prior_entry}\n{current_entry}")


# ============================================================
# COLLECTORS AND TRIGGERS
# ============================================================


class CollectorFamily(Enum):
    """Garbage collector that produced an event."""

    G1 = "G1"
    CMS = "CMS"
    PAR_NEW = "PAR_NEW"
    PARALLEL_SCAVENGE = "PARALLEL_SCAVENGE"
    PARALLEL_OLD = "PARALLEL_OLD"
    PARALLEL_SERIAL_OLD = "PARALLEL_SERIAL_OLD"
    SERIAL_NEW = "SERIAL_NEW"
    SERIAL_OLD = "SERIAL_OLD"
    SHENANDOAH = "SHENANDOAH"
    Z = "Z"
    UNKNOWN = "UNKNOWN"


class Trigger(Enum):
    """Collection cause as printed in the log."""

    SYSTEM_GC = ("system.gc", "System.gc()")
    ALLOCATION_FAILURE = ("allocation.failure", "Allocation Failure")
    METADATA_GC_THRESHOLD = ("metadata.gc.threshold", "Metadata GC Threshold")
    METADATA_GC_CLEAR_SOFT_REFERENCES = (
        "metadata.gc.clear.soft.references",
        "Metadata GC Clear Soft References",
    )
    ERGONOMICS = ("ergonomics", "Ergonomics")
    G1_EVACUATION_PAUSE = ("g1.evacuation.pause", "G1 Evacuation Pause")
    G1_HUMONGOUS_ALLOCATION = ("g1.humongous.allocation", "G1 Humongous Allocation")
    G1_PREVENTIVE_COLLECTION = ("g1.preventive.collection", "G1 Preventive Collection")
    G1_COMPACTION_PAUSE = ("g1.compaction.pause", "G1 Compaction Pause")
    GCLOCKER_INITIATED_GC = ("gclocker.initiated.gc", "GCLocker Initiated GC")
    CMS_INITIAL_MARK = ("cms.initial.mark", "CMS Initial Mark")
    CMS_FINAL_REMARK = ("cms.final.remark", "CMS Final Remark")
    CONCURRENT_MODE_FAILURE = ("concurrent.mode.failure", "concurrent mode failure")
    CONCURRENT_MODE_INTERRUPTED = ("concurrent.mode.interrupted", "concurrent mode interrupted")
    PROMOTION_FAILED = ("promotion.failed", "promotion failed")
    TO_SPACE_EXHAUSTED = ("to.space.exhausted", "to-space exhausted")
    TO_SPACE_OVERFLOW = ("to.space.overflow", "to-space overflow")
    HEAP_INSPECTION_INITIATED_GC = ("heap.inspection.initiated.gc", "Heap Inspection Initiated GC")
    HEAP_DUMP_INITIATED_GC = ("heap.dump.initiated.gc", "Heap Dump Initiated GC")
    CLASS_HISTOGRAM = ("class.histogram", "Class Histogram")
    LAST_DITCH_COLLECTION = ("last.ditch.collection", "Last ditch collection")
    JVMTI_FORCED_GARBAGE_COLLECTION = (
        "jvmti.forced.garbage.collection",
        "JvmtiEnv ForceGarbageCollection",
    )
    DIAGNOSTIC_COMMAND = ("diagnostic.command", "Diagnostic Command")
    ALLOCATION_RATE = ("allocation.rate", "Allocation Rate")
    ALLOCATION_STALL = ("allocation.stall", "Allocation Stall")
    WARMUP = ("warmup", "Warmup")
    PROACTIVE = ("proactive", "Proactive")
    TIMER = ("timer", "Timer")
    UPDATE_ALLOCATION_CONTEXT_STATS = (
        "update.allocation.context.stats",
        "Update Allocation Context Stats",
    )
    WHITEBOX_INITIATED_YOUNG_GC = ("whitebox.initiated.young.gc", "WhiteBox Initiated Young GC")
    NONE = ("none", "")
    UNKNOWN = ("unknown", "")

    def __init__(self, key: str, literal: str) -> None:
        self.key = key
        self.literal = literal

    @classmethod
    def from_literal(cls, text: str | None) -> Trigger:
        """Map a printed cause to its trigger; blank means NONE."""
        if text is None or not text.strip():
            return cls.NONE
        return _TRIGGERS_BY_LITERAL.get(text.strip(), cls.UNKNOWN)


_TRIGGERS_BY_LITERAL: dict[str, Trigger] = {
    trigger.literal: trigger for trigger in Trigger if trigger.literal
}


class PreprocessEvent(Enum):
    """Facts recorded while normalizing, before classification."""

    REFERENCE_GC = "REFERENCE_GC"


# ============================================================
# EVENT KINDS
# ============================================================


class KindTraits(NamedTuple):
    """Capabilities of an event kind."""

    collector: CollectorFamily | None = None
    blocking: bool = False
    parallel: bool = False
    serial: bool = False
    young: bool = False
    trigger: bool = False
    unified: bool = False
    throwaway: bool = False
    reportable: bool = True
    safepoint: bool = False
    # Unified G1 pauses report "Other" time outside the pause duration.
    other_in_duration: bool = False


class EventKind(Enum):
    """Every log-line category the classifier recognizes."""

    # Legacy G1
    G1_YOUNG_PAUSE = "G1_YOUNG_PAUSE"
    G1_MIXED_PAUSE = "G1_MIXED_PAUSE"
    G1_YOUNG_INITIAL_MARK = "G1_YOUNG_INITIAL_MARK"
    G1_REMARK = "G1_REMARK"
    G1_CLEANUP = "G1_CLEANUP"
    G1_FULL_GC_SERIAL = "G1_FULL_GC_SERIAL"
    G1_CONCURRENT = "G1_CONCURRENT"
    # CMS
    PAR_NEW = "PAR_NEW"
    CMS_INITIAL_MARK = "CMS_INITIAL_MARK"
    CMS_REMARK = "CMS_REMARK"
    CMS_CONCURRENT = "CMS_CONCURRENT"
    CMS_SERIAL_OLD = "CMS_SERIAL_OLD"
    # Parallel
    PARALLEL_SCAVENGE = "PARALLEL_SCAVENGE"
    PARALLEL_SERIAL_OLD = "PARALLEL_SERIAL_OLD"
    PARALLEL_COMPACTING_OLD = "PARALLEL_COMPACTING_OLD"
    # Serial
    SERIAL_NEW = "SERIAL_NEW"
    SERIAL_OLD = "SERIAL_OLD"
    # Collector unknown (no -XX:+PrintGCDetails)
    VERBOSE_GC_YOUNG = "VERBOSE_GC_YOUNG"
    VERBOSE_GC_OLD = "VERBOSE_GC_OLD"
    # Unified G1
    UNIFIED_G1_YOUNG_PAUSE = "UNIFIED_G1_YOUNG_PAUSE"
    UNIFIED_G1_YOUNG_PREPARE_MIXED = "UNIFIED_G1_YOUNG_PREPARE_MIXED"
    UNIFIED_G1_MIXED_PAUSE = "UNIFIED_G1_MIXED_PAUSE"
    UNIFIED_G1_YOUNG_INITIAL_MARK = "UNIFIED_G1_YOUNG_INITIAL_MARK"
    UNIFIED_G1_CLEANUP = "UNIFIED_G1_CLEANUP"
    UNIFIED_REMARK = "UNIFIED_REMARK"
    G1_FULL_GC_PARALLEL = "G1_FULL_GC_PARALLEL"
    # Unified other collectors
    UNIFIED_SERIAL_NEW = "UNIFIED_SERIAL_NEW"
    UNIFIED_SERIAL_OLD = "UNIFIED_SERIAL_OLD"
    UNIFIED_PARALLEL_SCAVENGE = "UNIFIED_PARALLEL_SCAVENGE"
    UNIFIED_PARALLEL_COMPACTING_OLD = "UNIFIED_PARALLEL_COMPACTING_OLD"
    UNIFIED_PAR_NEW = "UNIFIED_PAR_NEW"
    UNIFIED_CMS_INITIAL_MARK = "UNIFIED_CMS_INITIAL_MARK"
    UNIFIED_YOUNG = "UNIFIED_YOUNG"
    UNIFIED_OLD = "UNIFIED_OLD"
    UNIFIED_CONCURRENT = "UNIFIED_CONCURRENT"
    # Shenandoah
    SHENANDOAH_INIT_MARK = "SHENANDOAH_INIT_MARK"
    SHENANDOAH_FINAL_MARK = "SHENANDOAH_FINAL_MARK"
    SHENANDOAH_INIT_UPDATE = "SHENANDOAH_INIT_UPDATE"
    SHENANDOAH_FINAL_UPDATE = "SHENANDOAH_FINAL_UPDATE"
    SHENANDOAH_DEGENERATED_GC = "SHENANDOAH_DEGENERATED_GC"
    SHENANDOAH_FULL_GC = "SHENANDOAH_FULL_GC"
    SHENANDOAH_CONCURRENT = "SHENANDOAH_CONCURRENT"
    SHENANDOAH_STATS = "SHENANDOAH_STATS"
    SHENANDOAH_TRIGGER = "SHENANDOAH_TRIGGER"
    SHENANDOAH_CONSIDER_CLASS_UNLOADING_CONC_MARK = "SHENANDOAH_CONSIDER_CLASS_UNLOADING_CONC_MARK"
    # Z
    Z_MARK_START = "Z_MARK_START"
    Z_MARK_END = "Z_MARK_END"
    Z_RELOCATE_START = "Z_RELOCATE_START"
    Z_GARBAGE_COLLECTION = "Z_GARBAGE_COLLECTION"
    Z_STATS = "Z_STATS"
    # Safepoints
    APPLICATION_STOPPED_TIME = "APPLICATION_STOPPED_TIME"
    UNIFIED_SAFEPOINT = "UNIFIED_SAFEPOINT"
    APPLICATION_CONCURRENT_TIME = "APPLICATION_CONCURRENT_TIME"
    # Headers and JVM facts
    HEADER_COMMAND_LINE_FLAGS = "HEADER_COMMAND_LINE_FLAGS"
    HEADER_MEMORY = "HEADER_MEMORY"
    HEADER_VM_INFO = "HEADER_VM_INFO"
    UNIFIED_HEADER = "UNIFIED_HEADER"
    LOG_FILE = "LOG_FILE"
    GC_OVERHEAD_LIMIT = "GC_OVERHEAD_LIMIT"
    GC_LOCKER_SCAVENGE_FAILED = "GC_LOCKER_SCAVENGE_FAILED"
    VM_WARNING = "VM_WARNING"
    # Noise recognized so it can be discarded
    BLANK_LINE = "BLANK_LINE"
    UNIFIED_BLANK_LINE = "UNIFIED_BLANK_LINE"
    HEAP_AT_GC = "HEAP_AT_GC"
    TENURING_DISTRIBUTION = "TENURING_DISTRIBUTION"
    CLASS_UNLOADING = "CLASS_UNLOADING"
    FLS_STATISTICS = "FLS_STATISTICS"
    CLASS_HISTOGRAM = "CLASS_HISTOGRAM"
    THREAD_DUMP = "THREAD_DUMP"
    APPLICATION_LOGGING = "APPLICATION_LOGGING"
    GC_LOCKER_RETRY = "GC_LOCKER_RETRY"
    OOME_METASPACE = "OOME_METASPACE"
    HEAP_ADDRESS = "HEAP_ADDRESS"
    METASPACE_UTILS_REPORT = "METASPACE_UTILS_REPORT"
    # Pause detail lines the normalizer folds away
    UNIFIED_GC_DETAIL = "UNIFIED_GC_DETAIL"
    G1_DETAIL = "G1_DETAIL"
    UNKNOWN = "UNKNOWN"

    @property
    def traits(self) -> KindTraits:
        return KIND_TRAITS[self]

    @property
    def collector(self) -> CollectorFamily | None:
        return KIND_TRAITS[self].collector

    @property
    def is_blocking(self) -> bool:
        return KIND_TRAITS[self].blocking

    @property
    def is_throwaway(self) -> bool:
        return KIND_TRAITS[self].throwaway

    @property
    def is_unified(self) -> bool:
        return KIND_TRAITS[self].unified

    @property
    def is_reportable(self) -> bool:
        return KIND_TRAITS[self].reportable


_G1 = CollectorFamily.G1


def _pause(
    collector: CollectorFamily,
    *,
    parallel: bool = False,
    serial: bool = False,
    young: bool = False,
    trigger: bool = True,
    unified: bool = False,
    other_in_duration: bool = False,
) -> KindTraits:
    return KindTraits(
        collector=collector,
        blocking=True,
        parallel=parallel,
        serial=serial,
        young=young,
        trigger=trigger,
        unified=unified,
        other_in_duration=other_in_duration,
    )


def _noise(*, unified: bool = False, reportable: bool = True) -> KindTraits:
    return KindTraits(throwaway=True, unified=unified, reportable=reportable)


KIND_TRAITS: dict[EventKind, KindTraits] = {
    EventKind.G1_YOUNG_PAUSE: _pause(_G1, parallel=True, young=True),
    EventKind.G1_MIXED_PAUSE: _pause(_G1, parallel=True),
    EventKind.G1_YOUNG_INITIAL_MARK: _pause(_G1, parallel=True, young=True),
    EventKind.G1_REMARK: _pause(_G1, parallel=True, trigger=False),
    EventKind.G1_CLEANUP: _pause(_G1, parallel=True, trigger=False),
    EventKind.G1_FULL_GC_SERIAL: _pause(_G1, serial=True),
    EventKind.G1_CONCURRENT: KindTraits(collector=_G1),
    EventKind.PAR_NEW: _pause(CollectorFamily.PAR_NEW, parallel=True, young=True),
    EventKind.CMS_INITIAL_MARK: _pause(CollectorFamily.CMS, parallel=True),
    EventKind.CMS_REMARK: _pause(CollectorFamily.CMS, parallel=True),
    EventKind.CMS_CONCURRENT: KindTraits(collector=CollectorFamily.CMS),
    EventKind.CMS_SERIAL_OLD: _pause(CollectorFamily.SERIAL_OLD, serial=True),
    EventKind.PARALLEL_SCAVENGE: _pause(
        CollectorFamily.PARALLEL_SCAVENGE, parallel=True, young=True
    ),
    EventKind.PARALLEL_SERIAL_OLD: _pause(CollectorFamily.PARALLEL_SERIAL_OLD, serial=True),
    EventKind.PARALLEL_COMPACTING_OLD: _pause(CollectorFamily.PARALLEL_OLD, parallel=True),
    EventKind.SERIAL_NEW: _pause(CollectorFamily.SERIAL_NEW, serial=True, young=True),
    EventKind.SERIAL_OLD: _pause(CollectorFamily.SERIAL_OLD, serial=True),
    EventKind.VERBOSE_GC_YOUNG: _pause(CollectorFamily.UNKNOWN, young=True),
    EventKind.VERBOSE_GC_OLD: _pause(CollectorFamily.UNKNOWN),
    EventKind.UNIFIED_G1_YOUNG_PAUSE: _pause(
        _G1, parallel=True, young=True, unified=True, other_in_duration=True
    ),
    EventKind.UNIFIED_G1_YOUNG_PREPARE_MIXED: _pause(
        _G1, parallel=True, young=True, unified=True, other_in_duration=True
    ),
    EventKind.UNIFIED_G1_MIXED_PAUSE: _pause(
        _G1, parallel=True, unified=True, other_in_duration=True
    ),
    EventKind.UNIFIED_G1_YOUNG_INITIAL_MARK: _pause(
        _G1, parallel=True, young=True, unified=True, other_in_duration=True
    ),
    EventKind.UNIFIED_G1_CLEANUP: _pause(_G1, parallel=True, trigger=False, unified=True),
    EventKind.UNIFIED_REMARK: _pause(_G1, parallel=True, trigger=False, unified=True),
    EventKind.G1_FULL_GC_PARALLEL: _pause(_G1, parallel=True, unified=True),
    EventKind.UNIFIED_SERIAL_NEW: _pause(
        CollectorFamily.SERIAL_NEW, serial=True, young=True, unified=True
    ),
    EventKind.UNIFIED_SERIAL_OLD: _pause(CollectorFamily.SERIAL_OLD, serial=True, unified=True),
    EventKind.UNIFIED_PARALLEL_SCAVENGE: _pause(
        CollectorFamily.PARALLEL_SCAVENGE, parallel=True, young=True, unified=True
    ),
    EventKind.UNIFIED_PARALLEL_COMPACTING_OLD: _pause(
        CollectorFamily.PARALLEL_OLD, parallel=True, unified=True
    ),
    EventKind.UNIFIED_PAR_NEW: _pause(
        CollectorFamily.PAR_NEW, parallel=True, young=True, unified=True
    ),
    EventKind.UNIFIED_CMS_INITIAL_MARK: _pause(
        CollectorFamily.CMS, parallel=True, trigger=False, unified=True
    ),
    EventKind.UNIFIED_YOUNG: _pause(CollectorFamily.UNKNOWN, young=True, unified=True),
    EventKind.UNIFIED_OLD: _pause(CollectorFamily.UNKNOWN, unified=True),
    EventKind.UNIFIED_CONCURRENT: KindTraits(collector=CollectorFamily.UNKNOWN, unified=True),
    EventKind.SHENANDOAH_INIT_MARK: _pause(
        CollectorFamily.SHENANDOAH, parallel=True, trigger=False
    ),
    EventKind.SHENANDOAH_FINAL_MARK: _pause(
        CollectorFamily.SHENANDOAH, parallel=True, trigger=False
    ),
    EventKind.SHENANDOAH_INIT_UPDATE: _pause(CollectorFamily.SHENANDOAH, trigger=False),
    EventKind.SHENANDOAH_FINAL_UPDATE: _pause(CollectorFamily.SHENANDOAH, trigger=False),
    EventKind.SHENANDOAH_DEGENERATED_GC: _pause(CollectorFamily.SHENANDOAH, trigger=False),
    EventKind.SHENANDOAH_FULL_GC: _pause(CollectorFamily.SHENANDOAH, trigger=False),
    EventKind.SHENANDOAH_CONCURRENT: KindTraits(collector=CollectorFamily.SHENANDOAH),
    EventKind.SHENANDOAH_STATS: _noise(),
    EventKind.SHENANDOAH_TRIGGER: _noise(),
    EventKind.SHENANDOAH_CONSIDER_CLASS_UNLOADING_CONC_MARK: _noise(unified=True),
    EventKind.Z_MARK_START: _pause(CollectorFamily.Z, trigger=False, unified=True),
    EventKind.Z_MARK_END: _pause(CollectorFamily.Z, trigger=False, unified=True),
    EventKind.Z_RELOCATE_START: _pause(CollectorFamily.Z, trigger=False, unified=True),
    EventKind.Z_GARBAGE_COLLECTION: KindTraits(
        collector=CollectorFamily.Z, trigger=True, unified=True
    ),
    EventKind.Z_STATS: _noise(unified=True),
    EventKind.APPLICATION_STOPPED_TIME: KindTraits(safepoint=True),
    EventKind.UNIFIED_SAFEPOINT: KindTraits(safepoint=True, unified=True),
    EventKind.APPLICATION_CONCURRENT_TIME: _noise(),
    EventKind.HEADER_COMMAND_LINE_FLAGS: KindTraits(),
    EventKind.HEADER_MEMORY: KindTraits(),
    EventKind.HEADER_VM_INFO: KindTraits(),
    EventKind.UNIFIED_HEADER: KindTraits(unified=True),
    EventKind.LOG_FILE: KindTraits(),
    EventKind.GC_OVERHEAD_LIMIT: KindTraits(),
    EventKind.GC_LOCKER_SCAVENGE_FAILED: KindTraits(),
    EventKind.VM_WARNING: KindTraits(),
    EventKind.BLANK_LINE: _noise(reportable=False),
    EventKind.UNIFIED_BLANK_LINE: _noise(unified=True, reportable=False),
    EventKind.HEAP_AT_GC: _noise(),
    EventKind.TENURING_DISTRIBUTION: _noise(),
    EventKind.CLASS_UNLOADING: _noise(),
    EventKind.FLS_STATISTICS: _noise(),
    EventKind.CLASS_HISTOGRAM: _noise(),
    EventKind.THREAD_DUMP: _noise(),
    EventKind.APPLICATION_LOGGING: _noise(),
    EventKind.GC_LOCKER_RETRY: _noise(),
    EventKind.OOME_METASPACE: _noise(),
    EventKind.HEAP_ADDRESS: _noise(),
    EventKind.METASPACE_UTILS_REPORT: _noise(unified=True, reportable=False),
    EventKind.UNIFIED_GC_DETAIL: _noise(unified=True, reportable=False),
    EventKind.G1_DETAIL: _noise(reportable=False),
    EventKind.UNKNOWN: KindTraits(reportable=False),
}

# Kinds whose before/after sizes feed the allocation-rate report.
ALLOCATION_RATE_KINDS: frozenset[EventKind] = frozenset(
    {
        EventKind.UNIFIED_G1_YOUNG_PAUSE,
        EventKind.UNIFIED_G1_YOUNG_PREPARE_MIXED,
        EventKind.UNIFIED_G1_MIXED_PAUSE,
        EventKind.UNIFIED_G1_CLEANUP,
        EventKind.UNIFIED_REMARK,
        EventKind.G1_FULL_GC_PARALLEL,
    }
)

# ============================================================
# FINDINGS
# ============================================================


class FindingLike(Protocol):
    """Anything carrying a stable dotted key and human-readable text."""

    key: str
    literal: str


class Finding(Enum):
    """Diagnostic findings raised by the aggregator and analyzer."""

    ERROR_EXPLICIT_GC_SERIAL_G1 = (
        "error.explicit.gc.serial.g1",
        "Explicit garbage collection invoking a serial (single-threaded) full collection. "
        "Consider -XX:+ExplicitGCInvokesConcurrent or -XX:+DisableExplicitGC.",
    )
    WARN_EXPLICIT_GC_G1_YOUNG_INITIAL_MARK = (
        "warn.explicit.gc.g1.young.initial.mark",
        "Explicit garbage collection invoking a concurrent cycle (young initial mark). "
        "Make sure explicit collection is needed.",
    )
    WARN_EXPLICIT_GC_PARALLEL = (
        "warn.explicit.gc.parallel",
        "Explicit garbage collection invoking a parallel full collection.",
    )
    WARN_EXPLICIT_GC_SERIAL_PARALLEL = (
        "warn.explicit.gc.serial.parallel",
        "Explicit garbage collection invoking a serial old (PSOldGen) full collection.",
    )
    WARN_EXPLICIT_GC_SERIAL = (
        "warn.explicit.gc.serial",
        "Explicit garbage collection invoking a serial collection.",
    )
    ERROR_EXPLICIT_GC_SERIAL_CMS = (
        "error.explicit.gc.serial.cms",
        "Explicit garbage collection invoking a serial (single-threaded) full collection "
        "with the CMS collector. Consider -XX:+ExplicitGCInvokesConcurrentAndUnloadsClasses.",
    )
    WARN_EXPLICIT_GC_UNKNOWN = (
        "warn.explicit.gc.unknown",
        "Explicit garbage collection by an unidentified collector.",
    )
    WARN_EXPLICIT_GC_JVMTI = (
        "warn.explicit.gc.jvmti",
        "Explicit garbage collection invoked through the JVMTI ForceGarbageCollection API.",
    )
    WARN_EXPLICIT_GC_DIAGNOSTIC = (
        "warn.explicit.gc.diagnostic",
        "Explicit garbage collection invoked by a diagnostic command (e.g. jcmd GC.run).",
    )
    ERROR_SERIAL_GC_G1 = (
        "error.serial.gc.g1",
        "The G1 collector fell back to a serial (single-threaded) full collection.",
    )
    ERROR_SERIAL_GC_CMS = (
        "error.serial.gc.cms",
        "The CMS collector fell back to a serial (single-threaded) full collection.",
    )
    ERROR_SERIAL_GC_PARALLEL = (
        "error.serial.gc.parallel",
        "The parallel collector is using a serial old (PSOldGen) collection. "
        "Consider -XX:+UseParallelOldGC.",
    )
    WARN_SERIAL_GC = (
        "warn.serial.gc",
        "The serial collector is in use. It is only appropriate for small heaps.",
    )
    ERROR_CMS_CONCURRENT_MODE_FAILURE = (
        "error.cms.concurrent.mode.failure",
        "CMS concurrent mode failure: the old generation filled before the concurrent "
        "cycle finished.",
    )
    ERROR_CMS_CONCURRENT_MODE_INTERRUPTED = (
        "error.cms.concurrent.mode.interrupted",
        "CMS concurrent mode interrupted by an explicit or diagnostic collection.",
    )
    ERROR_CMS_PROMOTION_FAILED = (
        "error.cms.promotion.failed",
        "CMS promotion failed: objects could not be promoted to the old generation.",
    )
    ERROR_CMS_PAR_NEW_GC_LOCKER_FAILED = (
        "error.cms.par.new.gc.locker.failed",
        "The GC locker forced a full collection because a ParNew scavenge failed.",
    )
    WARN_CMS_CLASS_UNLOADING_NOT_ENABLED = (
        "warn.cms.class.unloading.not.enabled",
        "CMS remark without class unloading. Consider -XX:+CMSClassUnloadingEnabled.",
    )
    WARN_CMS_INITIAL_MARK_LOW_PARALLELISM = (
        "warn.cms.initial.mark.low.parallelism",
        "CMS initial mark with low parallelism. Consider -XX:+CMSParallelInitialMarkEnabled.",
    )
    WARN_CMS_REMARK_LOW_PARALLELISM = (
        "warn.cms.remark.low.parallelism",
        "CMS remark with low parallelism. Consider -XX:+CMSParallelRemarkEnabled.",
    )
    WARN_HEAP_DUMP_INITIATED_GC = (
        "warn.heap.dump.initiated.gc",
        "A heap dump initiated a full collection.",
    )
    WARN_HEAP_INSPECTION_INITIATED_GC = (
        "warn.heap.inspection.initiated.gc",
        "A heap inspection (e.g. jmap -histo:live) initiated a full collection.",
    )
    ERROR_METASPACE_ALLOCATION_FAILURE = (
        "error.metaspace.allocation.failure",
        "Last ditch collection: metaspace allocation failed and soft references were cleared.",
    )
    ERROR_G1_EVACUATION_FAILURE = (
        "error.g1.evacuation.failure",
        "G1 evacuation failure (to-space exhausted/overflow). Consider a larger heap or "
        "-XX:G1ReservePercent.",
    )
    INFO_G1_HUMONGOUS_ALLOCATION = (
        "info.g1.humongous.allocation",
        "Humongous allocations triggered collections. Consider a larger -XX:G1HeapRegionSize.",
    )
    ERROR_G1_HUMONGOUS_JDK_OLD = (
        "error.g1.humongous.jdk.old",
        "Humongous allocations on a JDK with known G1 humongous handling defects. "
        "Upgrade to JDK 8u60 or later.",
    )
    WARN_PRINT_GC_CAUSE_NOT_ENABLED = (
        "warn.print.gc.cause.not.enabled",
        "The collection cause is not logged. Enable -XX:+PrintGCCause.",
    )
    WARN_PRINT_GC_CAUSE_MISSING = (
        "warn.print.gc.cause.missing",
        "The collection cause is not logged. -XX:+PrintGCCause is missing (JDK7).",
    )
    WARN_PRINT_GC_CAUSE_DISABLED = (
        "warn.print.gc.cause.disabled",
        "The collection cause is not logged because -XX:-PrintGCCause disables it.",
    )
    INFO_PERM_GEN = (
        "info.perm.gen",
        "The JVM uses a permanent generation (JDK7 or earlier).",
    )
    WARN_PERM_SIZE_NOT_SET = (
        "warn.perm.size.not.set",
        "The permanent generation size is not set. Consider -XX:PermSize and -XX:MaxPermSize.",
    )
    WARN_PERM_MIN_NOT_EQUAL_MAX = (
        "warn.perm.min.not.equal.max",
        "-XX:PermSize is not equal to -XX:MaxPermSize; resizing the permanent generation "
        "requires a full collection.",
    )
    ERROR_SHENANDOAH_FULL_GC = (
        "error.shenandoah.full.gc",
        "Shenandoah fell back to a full (stop-the-world) collection.",
    )
    INFO_SHENANDOAH_UNCOMMIT_DISABLED = (
        "info.shenandoah.uncommit.disabled",
        "Shenandoah uncommit is disabled because the minimum heap equals the maximum heap.",
    )
    INFO_Z_STATISTICS_INTERVAL = (
        "info.z.statistics.interval",
        "Z statistics are logged periodically. Consider -XX:ZStatisticsInterval to reduce "
        "the logging.",
    )
    ERROR_GC_TIME_LIMIT_EXCEEDED = (
        "error.gc.time.limit.exceeded",
        "The GC time limit was exceeded (GC overhead limit).",
    )
    ERROR_SHARED_MEMORY_12 = (
        "error.shared.memory.12",
        "Shared memory could not be allocated (errno=12). Check large page settings.",
    )
    ERROR_UNIDENTIFIED_LOG_LINES_PREPARSE = (
        "error.unidentified.log.lines.preparse",
        "Unidentified log lines. Run with preprocessing enabled.",
    )
    INFO_UNIDENTIFIED_LOG_LINE_LAST = (
        "info.unidentified.log.line.last",
        "The last log line is unidentified (probably truncated).",
    )
    WARN_UNIDENTIFIED_LOG_LINE_REPORT = (
        "warn.unidentified.log.line.report",
        "Unidentified log lines. Please report them so support can be added.",
    )
    INFO_FIRST_TIMESTAMP_THRESHOLD_EXCEEDED = (
        "info.first.timestamp.threshold.exceeded",
        "The first timestamp is past the threshold: the log is probably partial (rotated).",
    )
    WARN_APPLICATION_STOPPED_TIME_MISSING = (
        "warn.application.stopped.time.missing",
        "Safepoint (stopped) time is not logged. Enable -XX:+PrintGCApplicationStoppedTime "
        "or -Xlog:safepoint.",
    )
    WARN_GC_STOPPED_RATIO = (
        "warn.gc.stopped.ratio",
        "GC pauses are a small share of stopped time: non-GC safepoints are significant.",
    )
    WARN_GC_SAFEPOINT_RATIO = (
        "warn.gc.safepoint.ratio",
        "GC pauses are a small share of safepoint time: non-GC safepoints are significant.",
    )
    INFO_SWAPPING = (
        "info.swapping",
        "The host is swapping.",
    )
    INFO_SWAP_DISABLED = (
        "info.swap.disabled",
        "Swap is disabled on the host.",
    )
    ERROR_PHYSICAL_MEMORY = (
        "error.physical.memory",
        "The configured JVM memory exceeds the physical memory of the host.",
    )
    INFO_NEW_RATIO_INVERTED = (
        "info.new.ratio.inverted",
        "The young generation is as large as or larger than the old generation.",
    )
    WARN_PARALLELISM_INVERTED = (
        "warn.parallelism.inverted",
        "Parallel collections with inverted parallelism (less CPU time than wall time).",
    )
    WARN_SERIALISM_INVERTED = (
        "warn.serialism.inverted",
        "Serial collections with inverted serialism (wall time well above CPU time).",
    )
    WARN_SYS_GT_USER = (
        "warn.sys.gt.user",
        "Collections with sys time greater than user time: the OS is doing GC work.",
    )
    WARN_PRINT_COMMANDLINE_FLAGS_DISABLED = (
        "warn.print.commandline.flags.disabled",
        "-XX:-PrintCommandLineFlags disables logging of JVM options.",
    )
    WARN_PRINT_COMMANDLINE_FLAGS = (
        "warn.print.commandline.flags",
        "JVM options are not logged. Enable -XX:+PrintCommandLineFlags.",
    )
    WARN_CLASS_HISTOGRAM = (
        "warn.class.histogram",
        "Class histogram output found in the log.",
    )
    WARN_APPLICATION_LOGGING = (
        "warn.application.logging",
        "Application logging is mixed with GC logging.",
    )
    ERROR_OOME_METASPACE = (
        "error.oome.metaspace",
        "OutOfMemoryError: Metaspace.",
    )
    INFO_THREAD_DUMP = (
        "info.thread.dump",
        "Thread dump output found in the log.",
    )
    ERROR_GC_LOCKER_RETRY = (
        "error.gc.locker.retry",
        "Allocation retried waiting for the GC locker too often.",
    )
    WARN_GC_LOCKER = (
        "warn.gc.locker",
        "JNI critical sections (GC locker) initiated collections.",
    )
    INFO_JDK_ANCIENT = (
        "info.jdk.ancient",
        "The JDK build is >1 yr old. Consider upgrading.",
    )
    WARN_SAFEPOINT_STATS = (
        "warn.safepoint.stats",
        "Safepoint statistics are from a JDK before 17.0.8, where the reported times are "
        "unreliable.",
    )
    WARN_DATESTAMP_APPROXIMATE = (
        "warn.datestamp.approximate",
        "The JVM start date is approximated from the log file creation date.",
    )

    def __init__(self, key: str, literal: str) -> None:
        self.key = key
        self.literal = literal

    @property
    def level(self) -> FindingLevel:
        return finding_level(self.key)


def finding_level(key: str) -> FindingLevel:
    """Level encoded as the first segment of a dotted finding key."""
    prefix = key.split(".", 1)[0]
    if prefix == "error":
        return "error"
    if prefix == "warn":
        return "warn"
    return "info"


class OptionFinding(Enum):
    """Findings raised from JVM options by the options collaborator."""

    INFO_GC_SERIAL_ELECTED = (
        "info.gc.serial.elected",
        "The serial collector is selected with -XX:+UseSerialGC.",
    )
    WARN_CMS_CLASS_UNLOADING_DISABLED = (
        "warn.cms.class.unloading.disabled",
        "-XX:-CMSClassUnloadingEnabled disables class unloading in the CMS concurrent cycle.",
    )
    WARN_EXPLICIT_GC_NOT_CONCURRENT = (
        "warn.explicit.gc.not.concurrent",
        "Explicit garbage collection is not concurrent. Consider "
        "-XX:+ExplicitGCInvokesConcurrent or -XX:+DisableExplicitGC.",
    )
    WARN_JDK8_PRINT_GC_DETAILS_DISABLED = (
        "warn.jdk8.print.gc.details.disabled",
        "-XX:-PrintGCDetails disables GC details needed for analysis.",
    )
    WARN_JDK8_PRINT_GC_DETAILS_MISSING = (
        "warn.jdk8.print.gc.details.missing",
        "GC details are not logged. Add -XX:+PrintGCDetails.",
    )
    INFO_PRINT_GC_APPLICATION_CONCURRENT_TIME = (
        "info.print.gc.application.concurrent.time",
        "-XX:+PrintGCApplicationConcurrentTime adds output with little diagnostic value.",
    )
    INFO_TRACE_CLASS_UNLOADING = (
        "info.trace.class.unloading",
        "-XX:+TraceClassUnloading logs every unloaded class.",
    )
    INFO_JDK8_PRINT_FLS_STATISTICS = (
        "info.jdk8.print.fls.statistics",
        "-XX:PrintFLSStatistics logs CMS free list statistics on every collection.",
    )
    INFO_JDK8_PRINT_REFERENCE_GC_ENABLED = (
        "info.jdk8.print.reference.gc.enabled",
        "-XX:+PrintReferenceGC logs reference processing times.",
    )
    INFO_JDK8_PRINT_TENURING_DISTRIBUTION = (
        "info.jdk8.print.tenuring.distribution",
        "-XX:+PrintTenuringDistribution logs the survivor age distribution.",
    )
    WARN_CLASS_HISTOGRAM = (
        "warn.print.class.histogram",
        "-XX:+PrintClassHistogram lets a thread dump (SIGQUIT) trigger a full collection.",
    )
    WARN_CLASS_HISTOGRAM_BEFORE_FULL_GC = (
        "warn.print.class.histogram.before.full.gc",
        "-XX:+PrintClassHistogramBeforeFullGC adds a class histogram to every full collection.",
    )
    WARN_CLASS_HISTOGRAM_AFTER_FULL_GC = (
        "warn.print.class.histogram.after.full.gc",
        "-XX:+PrintClassHistogramAfterFullGC adds a class histogram to every full collection.",
    )
    INFO_JDK8_PRINT_HEAP_AT_GC = (
        "info.jdk8.print.heap.at.gc",
        "-XX:+PrintHeapAtGC logs heap details before and after every collection.",
    )
    INFO_GC_LOG_STDOUT = (
        "info.gc.log.stdout",
        "GC logging goes to standard out. Consider logging to a file.",
    )
    ERROR_JDK8_CMS_PAR_NEW_DISABLED = (
        "error.jdk8.cms.par.new.disabled",
        "-XX:-UseParNewGC makes CMS use the serial young collector.",
    )
    INFO_CMS_INCREMENTAL_MODE = (
        "info.cms.incremental.mode",
        "CMS incremental mode (i-cms) is enabled. It is deprecated and rarely beneficial.",
    )

    def __init__(self, key: str, literal: str) -> None:
        self.key = key
        self.literal = literal

    @property
    def level(self) -> FindingLevel:
        return finding_level(self.key)


class FindingList:
    """Ordered, duplicate-free collection of findings."""

    def __init__(self, findings: Iterable[FindingLike] = ()) -> None:
        self._items: list[FindingLike] = []
        for finding in findings:
            self.add(finding)

    def add(self, finding: FindingLike) -> bool:
        if finding in self._items:
            return False
        self._items.append(finding)
        return True

    def insert_front(self, finding: FindingLike) -> None:
        if finding in self._items:
            self._items.remove(finding)
        self._items.insert(0, finding)

    def remove(self, finding: FindingLike) -> bool:
        if finding in self._items:
            self._items.remove(finding)
            return True
        return False

    def replace(self, old: FindingLike, new: FindingLike) -> None:
        """Swap a finding in place, keeping its position."""
        if old in self._items:
            index = self._items.index(old)
            if new in self._items:
                self._items.remove(old)
            else:
                self._items[index] = new
        else:
            self.add(new)

    def keys(self) -> list[str]:
        return [finding.key for finding in self._items]

    def __contains__(self, finding: object) -> bool:
        return finding in self._items

    def __iter__(self) -> Iterator[FindingLike]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"FindingList({self.keys()!r})"


# ============================================================
# EVENT VARIANTS
# ============================================================


class Occupancy(BaseModel):
    """Memory before/after a collection and the space available (KB)."""

    model_config = ConfigDict(frozen=True)

    before: KilobytesValue
    after: KilobytesValue
    space: KilobytesValue


class CpuTimes(BaseModel):
    """User, sys and real (wall) times of a collection in centiseconds."""

    model_config = ConfigDict(frozen=True)

    user: CentisValue
    sys: CentisValue
    real: CentisValue

    @property
    def parallelism(self) -> int:
        return calc_parallelism(self.user, self.sys, self.real)


class LogEvent(BaseModel):
    """One logical log line after classification.

    `timestamp` is JVM uptime in ms. When only a datestamp was logged,
    `datestamp` is set and `timestamp` counts ms from the reference epoch
    until a run start date resolves it.
    """

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    log_entry: str
    timestamp: MillisValue = 0
    datestamp: datetime | None = None
    datestamp_only: bool = False

    def uptime_millis(self, start_date: datetime | None) -> MillisValue | None:
        """Uptime in ms, resolving a datestamp-only stamp against the run start date."""
        if not self.datestamp_only:
            return self.timestamp
        if start_date is None or self.datestamp is None:
            return None
        delta = self.datestamp - start_date
        return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


class BlockingEvent(LogEvent):
    """A stop-the-world collection."""

    duration: MicrosValue
    trigger: Trigger | None = None
    combined: Occupancy | None = None
    young: Occupancy | None = None
    old: Occupancy | None = None
    perm: Occupancy | None = None
    times: CpuTimes | None = None
    other_time: MicrosValue | None = None
    ext_root_scanning_time: MicrosValue | None = None
    to_space_exhausted: bool = False
    class_unloading: bool = False
    incremental_mode: bool = False

    @property
    def collector(self) -> CollectorFamily:
        return self.kind.collector or CollectorFamily.UNKNOWN

    @property
    def duration_millis(self) -> MillisValue:
        return micros_to_millis(self.duration)

    @property
    def parallelism(self) -> int | None:
        return self.times.parallelism if self.times is not None else None


class SafepointEvent(LogEvent):
    """Application threads stopped at a safepoint (GC or otherwise)."""

    duration: MicrosValue
    total_nanos: int | None = None
    operation: str | None = None

    @property
    def duration_millis(self) -> MillisValue:
        return micros_to_millis(self.duration)


class ConcurrentEvent(LogEvent):
    """Collector work that runs alongside the application."""

    trigger: Trigger | None = None
    combined: Occupancy | None = None
    perm: Occupancy | None = None
    duration: MicrosValue | None = None


class CommandLineFlagsEvent(LogEvent):
    options: str


class MemoryHeaderEvent(LogEvent):
    physical_memory_kb: KilobytesValue = 0
    physical_memory_free_kb: KilobytesValue = 0
    swap_kb: KilobytesValue = 0
    swap_free_kb: KilobytesValue = 0


class VmInfoEvent(LogEvent):
    version_major: int = -1
    version_minor: int = -1
    is_32_bit: bool = False
    arch: str | None = None
    build_date: datetime | None = None
    release_string: str | None = None


class UnifiedHeaderEvent(LogEvent):
    """A unified header line; version lines carry the JDK release."""

    version_major: int | None = None
    version_minor: int | None = None
    release_string: str | None = None
    message: str = ""

    @property
    def is_version(self) -> bool:
        return self.release_string is not None


class LogFileEvent(LogEvent):
    created: bool = False
    file_date: datetime | None = None


class VmWarningEvent(LogEvent):
    message: str = ""
    errno: str | None = None


class ThrowawayEvent(LogEvent):
    """Recognized noise; only its kind is recorded."""

    header: bool = False


class UnknownEvent(LogEvent):
    """A line that matches no recognized grammar."""


# ============================================================
# REPORT SHAPES
# ============================================================


class MemoryAllocation(BaseModel):
    """Allocation rate observed between two collections."""

    allocated_kb_per_sec: KilobytesValue
    allocation_type: AllocationType
    init_log_entry: str
    end_log_entry: str
    init_timestamp: MillisValue
    end_timestamp: MillisValue

    def __str__(self) -> str:
        # A span of a second or less is too short to trust.
        flag = "*" if self.end_timestamp - self.init_timestamp <= 1000 else ""
        return f"{self.allocation_type}{flag} Allocation Rate: {self.allocated_kb_per_sec}K/sec"


class RunTimeWindow(BaseModel):
    """Fixed-length slice of the run with the pause time falling inside it."""

    number: int
    start_timestamp: MillisValue
    interval: MicrosValue
    pause_time: MicrosValue = 0
    log_entries: list[str] = Field(default_factory=list)

    @property
    def end_timestamp(self) -> MillisValue:
        return self.start_timestamp + micros_to_millis(self.interval)

    def __str__(self) -> str:
        return f"MMU #{self.number} pause: {self.pause_time // 1000}ms"


class SafepointSummary(BaseModel):
    """Safepoint totals for one VM operation (nanoseconds)."""

    operation: str
    count: int = 0
    total: int = 0
    max: int = 0


# ============================================================
# CONFIGURATION
# ============================================================


class AnalysisSettings(BaseModel):
    """Configurable thresholds for the analysis."""

    model_config = ConfigDict(frozen=True)

    throughput_threshold: int = Field(default=90, ge=0, le=100)
    first_timestamp_threshold_seconds: int = Field(default=60, ge=0)
    gc_safepoint_ratio_threshold: int = Field(default=80, ge=0, le=100)
    reject_limit: int = Field(default=1000, ge=0)
    high_allocation_threshold_kb: int = Field(default=1024 * 1024, ge=0)
    swap_free_threshold: int = Field(default=95, ge=0, le=100)
    ancient_jdk_days: int = Field(default=365, ge=0)
    window_interval_seconds: int = Field(default=2, gt=0)
    window_slices: int = Field(default=5, gt=0)
    low_parallelism_threshold: int = Field(default=200, gt=0)
    inverted_parallelism_threshold: int = Field(default=100, gt=0)
    # Serial collections whose wall time exceeds CPU time by more than this are suspect.
    serialism_slack_centis: int = Field(default=10, ge=0)
    # Only long CMS pauses are checked for low parallelism.
    cms_low_parallelism_min_micros: int = Field(default=10_000, ge=0)
