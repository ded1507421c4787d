"""Fold the typed event stream into run statistics and per-event findings."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

from gc_diagnose.classifier import parse_log_line
from gc_diagnose.models import (
    AnalysisSettings,
    BlockingEvent,
    CollectorFamily,
    CommandLineFlagsEvent,
    ConcurrentEvent,
    EventKind,
    Finding,
    FindingList,
    LogEvent,
    LogFileEvent,
    MemoryHeaderEvent,
    PreprocessEvent,
    SafepointEvent,
    SafepointSummary,
    ThrowawayEvent,
    TimeWarpError,
    Trigger,
    UnifiedHeaderEvent,
    UnknownEvent,
    VmInfoEvent,
    VmWarningEvent,
)
from gc_diagnose.normalizer import normalize
from gc_diagnose.options import JvmContext

logger = logging.getLogger(__name__)

# Explicit GC finding per collector family.
EXPLICIT_GC_FINDINGS: dict[CollectorFamily, Finding] = {
    CollectorFamily.PARALLEL_OLD: Finding.WARN_EXPLICIT_GC_PARALLEL,
    CollectorFamily.PARALLEL_SERIAL_OLD: Finding.WARN_EXPLICIT_GC_SERIAL_PARALLEL,
    CollectorFamily.SERIAL_NEW: Finding.WARN_EXPLICIT_GC_SERIAL,
    CollectorFamily.UNKNOWN: Finding.WARN_EXPLICIT_GC_UNKNOWN,
}

# Serial collections not caused by an explicit request or an inspection.
SERIAL_GC_FINDINGS: dict[EventKind, Finding] = {
    EventKind.G1_FULL_GC_SERIAL: Finding.ERROR_SERIAL_GC_G1,
    EventKind.CMS_SERIAL_OLD: Finding.ERROR_SERIAL_GC_CMS,
    EventKind.PARALLEL_SERIAL_OLD: Finding.ERROR_SERIAL_GC_PARALLEL,
    EventKind.SERIAL_OLD: Finding.WARN_SERIAL_GC,
}

REQUESTED_TRIGGERS: frozenset[Trigger] = frozenset(
    {
        Trigger.SYSTEM_GC,
        Trigger.CLASS_HISTOGRAM,
        Trigger.HEAP_INSPECTION_INITIATED_GC,
        Trigger.HEAP_DUMP_INITIATED_GC,
    }
)

# Trigger alone decides the finding, whatever the collector.
TRIGGER_FINDINGS: dict[Trigger, Finding] = {
    Trigger.HEAP_DUMP_INITIATED_GC: Finding.WARN_HEAP_DUMP_INITIATED_GC,
    Trigger.HEAP_INSPECTION_INITIATED_GC: Finding.WARN_HEAP_INSPECTION_INITIATED_GC,
    Trigger.LAST_DITCH_COLLECTION: Finding.ERROR_METASPACE_ALLOCATION_FAILURE,
    Trigger.JVMTI_FORCED_GARBAGE_COLLECTION: Finding.WARN_EXPLICIT_GC_JVMTI,
    Trigger.DIAGNOSTIC_COMMAND: Finding.WARN_EXPLICIT_GC_DIAGNOSTIC,
}

# Collections that report whether CMS runs in incremental mode.
CMS_INCREMENTAL_MODE_KINDS: frozenset[EventKind] = frozenset(
    {EventKind.PAR_NEW, EventKind.CMS_SERIAL_OLD, EventKind.CMS_INITIAL_MARK, EventKind.CMS_REMARK}
)

SHENANDOAH_UNCOMMIT_DISABLED = "Min heap equals to max heap, disabling ShenandoahUncommit"


class RunAccumulator(BaseModel):
    """Mutable run state. Only `fold` writes to it."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    context: JvmContext = Field(default_factory=JvmContext)
    findings: FindingList = Field(default_factory=FindingList)
    event_kinds: list[EventKind] = Field(default_factory=list)
    triggers: list[Trigger] = Field(default_factory=list)
    preprocess_events: list[PreprocessEvent] = Field(default_factory=list)
    preprocessed: bool = False
    last_line_unprocessed: str | None = None
    jdk17u8: bool = False

    # Blocking events
    blocking_events: list[BlockingEvent] = Field(default_factory=list)
    duration_total: int = 0
    duration_max: int = 0
    max_heap_occupancy: int = 0
    max_heap_space: int = 0
    max_heap_after_gc: int = 0
    max_perm_occupancy: int = 0
    max_perm_space: int = 0
    max_perm_after_gc: int = 0
    max_young_space: int = 0
    max_old_space: int = 0
    ext_root_scanning_time_total: int = 0
    ext_root_scanning_time_max: int = 0
    other_time_total: int = 0
    other_time_max: int = 0
    cms_incremental_mode: bool | None = None

    # Non-blocking maxima (Shenandoah concurrent phases)
    max_heap_occupancy_non_blocking: int = 0
    max_heap_space_non_blocking: int = 0
    max_perm_occupancy_non_blocking: int = 0
    max_perm_space_non_blocking: int = 0

    # CPU time trackers
    parallel_count: int = 0
    inverted_parallelism_count: int = 0
    worst_inverted_parallelism_event: BlockingEvent | None = None
    serial_count: int = 0
    inverted_serialism_count: int = 0
    worst_inverted_serialism_event: BlockingEvent | None = None
    sys_gt_user_count: int = 0
    worst_sys_gt_user_event: BlockingEvent | None = None

    # Safepoints: stopped time in micros, unified safepoint time in nanos
    safepoint_events: list[SafepointEvent] = Field(default_factory=list)
    stopped_time_event_count: int = 0
    stopped_time_total: int = 0
    stopped_time_max: int = 0
    unified_safepoint_event_count: int = 0
    unified_safepoint_time_total: int = 0
    unified_safepoint_time_max: int = 0
    safepoint_summaries: dict[str, SafepointSummary] = Field(default_factory=dict)

    # Headers (memory in bytes)
    memory: str | None = None
    physical_memory: int = 0
    physical_memory_free: int = 0
    swap: int = 0
    swap_free: int = 0
    vm_info: str | None = None
    log_file_date: datetime | None = None

    first_log_event: LogEvent | None = None
    unidentified_lines: list[str] = Field(default_factory=list)
    log_ending_unidentified: bool = False

    # Fold cursor
    prior_blocking_event: BlockingEvent | None = None

    @property
    def blocking_event_count(self) -> int:
        return len(self.blocking_events)

    @property
    def first_gc_event(self) -> BlockingEvent | None:
        return self.blocking_events[0] if self.blocking_events else None

    @property
    def last_gc_event(self) -> BlockingEvent | None:
        return self.blocking_events[-1] if self.blocking_events else None

    @property
    def first_safepoint_event(self) -> SafepointEvent | None:
        return self.safepoint_events[0] if self.safepoint_events else None

    @property
    def last_safepoint_event(self) -> SafepointEvent | None:
        return self.safepoint_events[-1] if self.safepoint_events else None

    def add_finding(self, finding: Finding) -> None:
        if self.findings.add(finding):
            logger.debug("Finding: %s", finding.key)

    def add_kind(self, kind: EventKind) -> bool:
        """Record an observed kind; False when it was already seen."""
        if kind in self.event_kinds:
            return False
        self.event_kinds.append(kind)
        return True


# ============================================================
# BLOCKING EVENTS
# ============================================================


def _record_blocking(acc: RunAccumulator, event: BlockingEvent) -> None:
    acc.blocking_events.append(event)
    acc.duration_total += event.duration
    acc.duration_max = max(acc.duration_max, event.duration)
    if event.combined is not None:
        acc.max_heap_occupancy = max(acc.max_heap_occupancy, event.combined.before)
        acc.max_heap_space = max(acc.max_heap_space, event.combined.space)
        acc.max_heap_after_gc = max(acc.max_heap_after_gc, event.combined.after)
    if event.perm is not None:
        acc.max_perm_occupancy = max(acc.max_perm_occupancy, event.perm.before)
        acc.max_perm_space = max(acc.max_perm_space, event.perm.space)
        acc.max_perm_after_gc = max(acc.max_perm_after_gc, event.perm.after)
    if event.young is not None:
        acc.max_young_space = max(acc.max_young_space, event.young.space)
    if event.old is not None:
        acc.max_old_space = max(acc.max_old_space, event.old.space)
    if acc.cms_incremental_mode is None and event.kind in CMS_INCREMENTAL_MODE_KINDS:
        acc.cms_incremental_mode = event.incremental_mode


def _explicit_gc_finding(event: BlockingEvent) -> Finding | None:
    collector = event.collector
    if collector is CollectorFamily.G1:
        if event.kind is EventKind.G1_FULL_GC_SERIAL:
            return Finding.ERROR_EXPLICIT_GC_SERIAL_G1
        if event.kind is EventKind.G1_YOUNG_INITIAL_MARK:
            return Finding.WARN_EXPLICIT_GC_G1_YOUNG_INITIAL_MARK
        return None
    if collector is CollectorFamily.SERIAL_OLD:
        return Finding.ERROR_EXPLICIT_GC_SERIAL_CMS if event.kind is EventKind.CMS_SERIAL_OLD else None
    return EXPLICIT_GC_FINDINGS.get(collector)


def _check_times(acc: RunAccumulator, event: BlockingEvent, settings: AnalysisSettings) -> None:
    """Parallelism, serialism and sys > user trackers."""
    times = event.times
    if times is None:
        return
    traits = event.kind.traits
    parallelism = times.parallelism

    if traits.parallel:
        acc.parallel_count += 1
        if times.user > 0 and parallelism < settings.inverted_parallelism_threshold:
            acc.inverted_parallelism_count += 1
            worst = acc.worst_inverted_parallelism_event
            if worst is None or parallelism < worst.parallelism:
                acc.worst_inverted_parallelism_event = event
    elif traits.serial:
        acc.serial_count += 1
        # Ignore wall time within the slack of CPU time
        if (
            times.user > 0
            and parallelism < settings.inverted_parallelism_threshold
            and times.real - times.user - times.sys > settings.serialism_slack_centis
        ):
            acc.inverted_serialism_count += 1
            worst = acc.worst_inverted_serialism_event
            if worst is None or parallelism < worst.parallelism:
                acc.worst_inverted_serialism_event = event
    else:
        return

    # Ignore sys - user = .01 secs
    if times.sys > 0 and times.user > 0 and times.sys > times.user + 1:
        acc.sys_gt_user_count += 1
        worst = acc.worst_sys_gt_user_event
        if worst is None or worst.times is None or (
            times.sys - times.user > worst.times.sys - worst.times.user
        ):
            acc.worst_sys_gt_user_event = event


def _is_low_parallelism(event: BlockingEvent, settings: AnalysisSettings) -> bool:
    times = event.times
    return (
        times is not None
        and times.user > 0
        and times.real > 0
        and event.duration >= settings.cms_low_parallelism_min_micros
        and times.parallelism < settings.low_parallelism_threshold
    )


def _fold_blocking(acc: RunAccumulator, event: BlockingEvent, settings: AnalysisSettings) -> None:
    _record_blocking(acc, event)
    trigger = event.trigger

    if trigger is Trigger.SYSTEM_GC and (finding := _explicit_gc_finding(event)):
        acc.add_finding(finding)

    if event.kind.traits.serial and trigger not in REQUESTED_TRIGGERS:
        if finding := SERIAL_GC_FINDINGS.get(event.kind):
            acc.add_finding(finding)

    if event.kind is EventKind.CMS_SERIAL_OLD:
        if trigger is Trigger.CONCURRENT_MODE_FAILURE:
            acc.add_finding(Finding.ERROR_CMS_CONCURRENT_MODE_FAILURE)
        elif trigger is Trigger.CONCURRENT_MODE_INTERRUPTED:
            acc.add_finding(Finding.ERROR_CMS_CONCURRENT_MODE_INTERRUPTED)
        elif trigger is Trigger.PROMOTION_FAILED:
            acc.add_finding(Finding.ERROR_CMS_PROMOTION_FAILED)

    if trigger is not None and (finding := TRIGGER_FINDINGS.get(trigger)):
        acc.add_finding(finding)

    if event.to_space_exhausted:
        acc.add_finding(Finding.ERROR_G1_EVACUATION_FAILURE)

    if event.kind is EventKind.G1_FULL_GC_SERIAL and trigger is Trigger.NONE:
        acc.add_finding(Finding.WARN_PRINT_GC_CAUSE_NOT_ENABLED)

    if event.kind is EventKind.CMS_REMARK and not event.class_unloading:
        acc.add_finding(Finding.WARN_CMS_CLASS_UNLOADING_NOT_ENABLED)

    if event.collector is CollectorFamily.G1 and trigger is Trigger.G1_HUMONGOUS_ALLOCATION:
        acc.add_finding(Finding.INFO_G1_HUMONGOUS_ALLOCATION)

    _check_times(acc, event, settings)

    if event.kind is EventKind.CMS_INITIAL_MARK and _is_low_parallelism(event, settings):
        acc.add_finding(Finding.WARN_CMS_INITIAL_MARK_LOW_PARALLELISM)
    if event.kind is EventKind.CMS_REMARK and _is_low_parallelism(event, settings):
        acc.add_finding(Finding.WARN_CMS_REMARK_LOW_PARALLELISM)

    if event.perm is not None and "Perm" in event.log_entry:
        acc.add_finding(Finding.INFO_PERM_GEN)

    if event.kind is EventKind.SHENANDOAH_FULL_GC:
        acc.add_finding(Finding.ERROR_SHENANDOAH_FULL_GC)

    if event.ext_root_scanning_time and event.ext_root_scanning_time > 0:
        acc.ext_root_scanning_time_total += event.ext_root_scanning_time
        acc.ext_root_scanning_time_max = max(acc.ext_root_scanning_time_max, event.ext_root_scanning_time)

    if event.other_time and event.other_time > 0:
        acc.other_time_total += event.other_time
        acc.other_time_max = max(acc.other_time_max, event.other_time)


# ============================================================
# OTHER EVENTS
# ============================================================


def _fold_safepoint(acc: RunAccumulator, event: SafepointEvent) -> None:
    acc.safepoint_events.append(event)
    if event.kind is EventKind.APPLICATION_STOPPED_TIME:
        acc.stopped_time_event_count += 1
        acc.stopped_time_total += event.duration
        acc.stopped_time_max = max(acc.stopped_time_max, event.duration)
        return

    nanos = event.total_nanos or 0
    acc.unified_safepoint_event_count += 1
    acc.unified_safepoint_time_total += nanos
    acc.unified_safepoint_time_max = max(acc.unified_safepoint_time_max, nanos)
    operation = event.operation or "Unknown"
    summary = acc.safepoint_summaries.setdefault(operation, SafepointSummary(operation=operation))
    summary.count += 1
    summary.total += nanos
    summary.max = max(summary.max, nanos)


def _fold_header(acc: RunAccumulator, event: LogEvent) -> None:
    context = acc.context
    if isinstance(event, CommandLineFlagsEvent):
        context.options = event.options
    elif isinstance(event, MemoryHeaderEvent):
        acc.memory = event.log_entry
        acc.physical_memory = event.physical_memory_kb * 1024
        acc.physical_memory_free = event.physical_memory_free_kb * 1024
        acc.swap = event.swap_kb * 1024
        acc.swap_free = event.swap_free_kb * 1024
        context.physical_memory = acc.physical_memory
    elif isinstance(event, VmInfoEvent):
        context.version_major = event.version_major
        context.version_minor = event.version_minor
        context.is_32_bit = context.is_32_bit or event.is_32_bit
        context.arch = event.arch
        context.build_date = event.build_date
        context.release_string = event.release_string
        acc.vm_info = event.log_entry
    elif isinstance(event, UnifiedHeaderEvent):
        if event.is_version:
            context.version_major = event.version_major if event.version_major is not None else -1
            context.version_minor = event.version_minor if event.version_minor is not None else -1
            context.release_string = event.release_string
            acc.vm_info = event.release_string
        elif SHENANDOAH_UNCOMMIT_DISABLED in event.message:
            acc.add_finding(Finding.INFO_SHENANDOAH_UNCOMMIT_DISABLED)
    elif isinstance(event, LogFileEvent) and event.created:
        acc.log_file_date = event.file_date


def _fold_concurrent(acc: RunAccumulator, event: ConcurrentEvent) -> None:
    if event.kind is not EventKind.SHENANDOAH_CONCURRENT:
        return
    if event.combined is not None:
        acc.max_heap_occupancy_non_blocking = max(acc.max_heap_occupancy_non_blocking, event.combined.before)
        acc.max_heap_space_non_blocking = max(acc.max_heap_space_non_blocking, event.combined.space)
    if event.perm is not None:
        acc.max_perm_occupancy_non_blocking = max(acc.max_perm_occupancy_non_blocking, event.perm.before)
        acc.max_perm_space_non_blocking = max(acc.max_perm_space_non_blocking, event.perm.space)


# ============================================================
# FOLD
# ============================================================


def fold(
    acc: RunAccumulator,
    event: LogEvent,
    *,
    reorder: bool = False,
    settings: AnalysisSettings | None = None,
) -> RunAccumulator:
    """Apply one event to the accumulator.

    Args:
        acc: The run accumulator (mutated and returned)
        event: A classified log event
        reorder: Accept blocking events that go back in time
        settings: Analysis thresholds

    Returns:
        The same accumulator

    Raises:
        TimeWarpError: If a blocking event is earlier than its predecessor and reorder is off
    """
    settings = settings or AnalysisSettings()

    if isinstance(event, UnknownEvent):
        acc.log_ending_unidentified = True
        if len(acc.unidentified_lines) < settings.reject_limit:
            acc.unidentified_lines.append(event.log_entry)
    else:
        acc.log_ending_unidentified = False

    if isinstance(event, BlockingEvent):
        prior = acc.prior_blocking_event
        if not reorder and prior is not None and event.timestamp < prior.timestamp:
            raise TimeWarpError(prior.log_entry, event.log_entry)
        _fold_blocking(acc, event, settings)
        acc.prior_blocking_event = event
    elif isinstance(event, SafepointEvent):
        _fold_safepoint(acc, event)
    elif isinstance(event, ConcurrentEvent):
        _fold_concurrent(acc, event)
    elif isinstance(event, VmWarningEvent):
        if event.errno == "12":
            acc.add_finding(Finding.ERROR_SHARED_MEMORY_12)
    elif event.kind is EventKind.GC_OVERHEAD_LIMIT:
        acc.add_finding(Finding.ERROR_GC_TIME_LIMIT_EXCEEDED)
    elif event.kind is EventKind.GC_LOCKER_SCAVENGE_FAILED:
        acc.add_finding(Finding.ERROR_CMS_PAR_NEW_GC_LOCKER_FAILED)
    elif not isinstance(event, (ThrowawayEvent, UnknownEvent)):
        _fold_header(acc, event)

    if not acc.add_kind(event.kind):
        if isinstance(event, ThrowawayEvent) and event.kind is EventKind.Z_STATS and event.header:
            acc.add_finding(Finding.INFO_Z_STATISTICS_INTERVAL)

    trigger = getattr(event, "trigger", None)
    if trigger is not None and trigger not in acc.triggers:
        acc.triggers.append(trigger)

    if isinstance(event, (BlockingEvent, ConcurrentEvent)) and (collector := event.kind.collector):
        acc.context.add_collector(collector)

    if acc.first_log_event is None and event.timestamp > 0:
        acc.first_log_event = event

    return acc


def ingest(
    lines: Iterable[str],
    *,
    reorder: bool = False,
    settings: AnalysisSettings | None = None,
    preprocess: bool = True,
) -> RunAccumulator:
    """Normalize, classify and fold one log.

    Args:
        lines: Raw log lines
        reorder: Accept and sort out-of-order blocking events
        settings: Analysis thresholds
        preprocess: Merge multi-line events first (off only for already-normalized input)

    Returns:
        The filled run accumulator
    """
    settings = settings or AnalysisSettings()
    acc = RunAccumulator()

    if preprocess:
        result = normalize(lines)
        logical_lines = result.lines
        for kind in result.throwaway_kinds:
            acc.add_kind(kind)
        acc.preprocess_events = list(result.preprocess_events)
        acc.last_line_unprocessed = result.last_line_unprocessed
        acc.jdk17u8 = result.jdk17u8
        acc.preprocessed = True
        if result.z_statistics_interval:
            acc.add_finding(Finding.INFO_Z_STATISTICS_INTERVAL)
    else:
        logical_lines = [line.rstrip() for line in lines]

    prior_line: str | None = None
    for line in logical_lines:
        event = parse_log_line(line, prior_line)
        fold(acc, event, reorder=reorder, settings=settings)
        prior_line = line

    if reorder:
        acc.blocking_events.sort(key=lambda e: e.timestamp)
        acc.safepoint_events.sort(key=lambda e: e.timestamp)

    logger.info(
        "Folded %d lines: %d blocking, %d safepoint, %d unidentified",
        len(logical_lines),
        acc.blocking_event_count,
        len(acc.safepoint_events),
        len(acc.unidentified_lines),
    )
    return acc
