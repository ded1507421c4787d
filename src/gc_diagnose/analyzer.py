"""Finalize phase: derived series, the ordered rule battery and the run snapshot."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from gc_diagnose.aggregator import RunAccumulator, ingest
from gc_diagnose.classifier import SAFEPOINT_JDK17_PATTERN
from gc_diagnose.models import (
    ALLOCATION_RATE_KINDS,
    AllocationType,
    AnalysisSettings,
    BlockingEvent,
    CollectorFamily,
    EventKind,
    Finding,
    FindingLevel,
    FindingList,
    LogEvent,
    MemoryAllocation,
    OptionFinding,
    PreprocessEvent,
    RunTimeWindow,
    SafepointEvent,
    SafepointSummary,
    Trigger,
    finding_level,
)
from gc_diagnose.options import JvmContext, JvmOptions, is_option_disabled, option_bytes
from gc_diagnose.patterns import DATESTAMP_BODY, UPTIME_BODY
from gc_diagnose.units import (
    day_diff,
    micros_to_millis,
    nanos_to_micros,
    nanos_to_millis,
    percent,
    ratio_whole,
    years_literal,
)

logger = logging.getLogger(__name__)

ANCIENT_PLACEHOLDER = ">1 yr"
BOTTLENECK_GAP = "..."

_DATESTAMP: re.Pattern[str] = re.compile(DATESTAMP_BODY)
_LOG_ENTRY_UPTIME: re.Pattern[str] = re.compile(rf"(?<![\d.,])(?P<uptime>{UPTIME_BODY}): ")

TimedEvent = BlockingEvent | SafepointEvent


# ============================================================
# SNAPSHOT
# ============================================================


class RunSnapshot(BaseModel):
    """Immutable result of one analysis pass."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    analysis: list[tuple[str, str]] = Field(default_factory=list)
    event_kinds: list[EventKind] = Field(default_factory=list)
    triggers: list[Trigger] = Field(default_factory=list)
    collectors: list[CollectorFamily] = Field(default_factory=list)
    preprocess_events: list[PreprocessEvent] = Field(default_factory=list)
    preprocessed: bool = False

    version_major: int = -1
    version_minor: int = -1
    release_string: str | None = None
    vm_info: str | None = None
    jvm_options: str | None = None
    start_date: datetime | None = None
    has_datestamps: bool = False

    # Blocking events (durations in micros, memory in KB)
    blocking_event_count: int = 0
    gc_pause_total: int = 0
    gc_pause_max: int = 0
    first_gc_event: BlockingEvent | None = None
    last_gc_event: BlockingEvent | None = None
    max_heap_occupancy: int = 0
    max_heap_space: int = 0
    max_heap_after_gc: int = 0
    max_perm_occupancy: int = 0
    max_perm_space: int = 0
    max_perm_after_gc: int = 0
    max_young_space: int = 0
    max_old_space: int = 0
    max_heap_occupancy_non_blocking: int = 0
    max_heap_space_non_blocking: int = 0
    max_perm_occupancy_non_blocking: int = 0
    max_perm_space_non_blocking: int = 0
    ext_root_scanning_time_total: int = 0
    ext_root_scanning_time_max: int = 0
    other_time_total: int = 0
    other_time_max: int = 0

    parallel_count: int = 0
    inverted_parallelism_count: int = 0
    worst_inverted_parallelism_event: BlockingEvent | None = None
    serial_count: int = 0
    inverted_serialism_count: int = 0
    worst_inverted_serialism_event: BlockingEvent | None = None
    sys_gt_user_count: int = 0
    worst_sys_gt_user_event: BlockingEvent | None = None

    # Safepoints: stopped time in micros, unified safepoint time in nanos
    first_safepoint_event: SafepointEvent | None = None
    last_safepoint_event: SafepointEvent | None = None
    stopped_time_event_count: int = 0
    stopped_time_total: int = 0
    stopped_time_max: int = 0
    unified_safepoint_event_count: int = 0
    unified_safepoint_time_total: int = 0
    unified_safepoint_time_max: int = 0
    safepoint_summaries: list[SafepointSummary] = Field(default_factory=list)

    first_event: LogEvent | None = None
    last_event: LogEvent | None = None
    first_log_event: LogEvent | None = None

    # Host memory in bytes
    memory: str | None = None
    physical_memory: int = 0
    physical_memory_free: int = 0
    swap: int = 0
    swap_free: int = 0

    # Derived ratios (percent)
    jvm_run_duration: int = 0
    gc_throughput: int = 100
    stopped_time_throughput: int = 100
    unified_safepoint_throughput: int = 100
    gc_stopped_ratio: int = 100
    gc_unified_safepoint_ratio: int = 100
    percent_swap_free: int = 100
    new_ratio: int = 0

    gc_bottlenecks: list[str] = Field(default_factory=list)
    safepoint_bottlenecks: list[str] = Field(default_factory=list)
    allocations: list[MemoryAllocation] = Field(default_factory=list)
    run_time_windows: list[RunTimeWindow] = Field(default_factory=list)
    run_time_windows_histogram: dict[str, int] = Field(default_factory=dict)

    unidentified_lines: list[str] = Field(default_factory=list)
    log_ending_unidentified: bool = False
    last_line_unprocessed: str | None = None

    @property
    def analysis_keys(self) -> list[str]:
        return [key for key, _ in self.analysis]

    def has_analysis(self, key: str) -> bool:
        return key in self.analysis_keys

    def analysis_literal(self, key: str) -> str | None:
        for item_key, literal in self.analysis:
            if item_key == key:
                return literal
        return None

    @property
    def worst_level(self) -> FindingLevel | None:
        """Most severe finding level, or None without findings."""
        levels = {finding_level(key) for key in self.analysis_keys}
        for level in ("error", "warn", "info"):
            if level in levels:
                return level
        return None


# ============================================================
# FIRST / LAST EVENTS AND RATIOS
# ============================================================


def first_event(acc: RunAccumulator) -> LogEvent | None:
    """First GC or safepoint event. A zero timestamp counts as unknown and loses to a positive one."""
    gc_event, safepoint = acc.first_gc_event, acc.first_safepoint_event
    gc_ts = gc_event.timestamp if gc_event is not None else 0
    safepoint_ts = safepoint.timestamp if safepoint is not None else 0
    if min(gc_ts, safepoint_ts) == 0:
        return gc_event if gc_event is not None and gc_ts >= safepoint_ts else safepoint
    return gc_event if gc_ts <= safepoint_ts else safepoint


def last_event(acc: RunAccumulator) -> LogEvent | None:
    """Last GC or safepoint event; the GC event wins ties."""
    gc_event, safepoint = acc.last_gc_event, acc.last_safepoint_event
    gc_ts = gc_event.timestamp if gc_event is not None else 0
    safepoint_ts = safepoint.timestamp if safepoint is not None else 0
    return gc_event if gc_event is not None and gc_ts >= safepoint_ts else safepoint


def jvm_run_duration(acc: RunAccumulator, settings: AnalysisSettings) -> int:
    """Run duration in ms, from the first event (or 0) to the end of the last event."""
    first = first_event(acc)
    threshold = settings.first_timestamp_threshold_seconds * 1000
    start = 0 if first is None or first.timestamp <= threshold else first.timestamp

    gc_event, safepoint = acc.last_gc_event, acc.last_safepoint_event
    gc_ts = gc_event.timestamp if gc_event is not None else 0
    gc_duration = gc_event.duration if gc_event is not None else 0
    safepoint_ts = safepoint.timestamp if safepoint is not None else 0
    safepoint_duration = safepoint.duration if safepoint is not None else 0

    if safepoint_ts > gc_ts:
        end = safepoint_ts + micros_to_millis(safepoint_duration)
    else:
        end = gc_ts + micros_to_millis(gc_duration)
    return end - start


def gc_throughput(acc: RunAccumulator, duration: int) -> int:
    """Percent of the run not spent in GC pauses."""
    if acc.blocking_event_count <= 0 or duration == 0:
        return 100
    return percent(duration - micros_to_millis(acc.duration_total), duration)


def stopped_time_throughput(acc: RunAccumulator, duration: int) -> int:
    if acc.stopped_time_event_count <= 0:
        return 100
    if duration <= 0:
        return 0
    return percent(duration - micros_to_millis(acc.stopped_time_total), duration)


def unified_safepoint_throughput(acc: RunAccumulator, duration: int) -> int:
    if acc.unified_safepoint_event_count <= 0:
        return 100
    if duration <= 0:
        return 0
    return percent(duration - nanos_to_millis(acc.unified_safepoint_time_total), duration)


def gc_stopped_ratio(acc: RunAccumulator) -> int:
    """GC pause time as a percent of stopped time (100: all stopped time is GC)."""
    if acc.duration_total <= 0 or acc.stopped_time_total <= 0:
        return 100
    return percent(acc.duration_total, acc.stopped_time_total)


def gc_unified_safepoint_ratio(acc: RunAccumulator) -> int:
    safepoint_micros = nanos_to_micros(acc.unified_safepoint_time_total)
    if acc.duration_total <= 0 or safepoint_micros <= 0:
        return 100
    return percent(acc.duration_total, safepoint_micros)


def percent_swap_free(acc: RunAccumulator) -> int:
    if acc.swap <= 0:
        return 100
    return percent(acc.swap_free, acc.swap)


def new_ratio(acc: RunAccumulator) -> int:
    """Old/young space ratio, rounded to a whole number."""
    if acc.max_young_space == 0 or acc.max_old_space == 0:
        return 0
    return ratio_whole(acc.max_old_space, acc.max_young_space)


def has_datestamps(event: LogEvent | None) -> bool:
    return event is not None and bool(_DATESTAMP.search(event.log_entry))


# ============================================================
# DERIVED SERIES
# ============================================================


def is_bottleneck(event: TimedEvent, prior: TimedEvent, throughput_threshold: int) -> bool:
    """True when the pause eats more of the interval since the prior pause than the goal allows.

    The interval runs from the end of the prior event to the end of this one.
    Overlapping events are not judged.
    """
    prior_end = prior.timestamp + micros_to_millis(prior.duration)
    interval = event.timestamp + micros_to_millis(event.duration) - prior_end
    if interval < 0:
        logger.debug("Overlapping events skipped: %r / %r", prior.log_entry, event.log_entry)
        return False
    duration_threshold = int(Decimal(100 - throughput_threshold) / 100 * interval)
    return micros_to_millis(event.duration) > duration_threshold


def datestamp_entry(log_entry: str, start_date: datetime) -> str:
    """Rewrite uptime stamps in a log entry as wall-clock datestamps."""

    def _replace(match: re.Match[str]) -> str:
        millis = int(Decimal(match.group("uptime").replace(",", ".")) * 1000)
        moment = start_date + timedelta(milliseconds=millis)
        return f"{moment:%Y-%m-%dT%H:%M:%S}.{moment.microsecond // 1000:03d}: "

    return _LOG_ENTRY_UPTIME.sub(_replace, log_entry)


def bottlenecks(
    events: Sequence[TimedEvent], throughput_threshold: int, start_date: datetime | None = None
) -> list[str]:
    """Log entries of consecutive event pairs that miss the throughput goal.

    Non-contiguous runs are separated by a "..." marker.
    """

    def entry(event: TimedEvent) -> str:
        if start_date is None:
            return event.log_entry
        return datestamp_entry(event.log_entry, start_date)

    found: list[str] = []
    prior: TimedEvent | None = None
    for event in events:
        if prior is not None and is_bottleneck(event, prior, throughput_threshold):
            if not found:
                found.extend([entry(prior), entry(event)])
            elif entry(prior) != found[-1]:
                found.extend([BOTTLENECK_GAP, entry(prior), entry(event)])
            else:
                found.append(entry(event))
        prior = event
    return found


def _allocation(
    allocation_type: AllocationType, rate: int, init: LogEvent | None, end: LogEvent | None
) -> MemoryAllocation:
    return MemoryAllocation(
        allocated_kb_per_sec=rate,
        allocation_type=allocation_type,
        init_log_entry=init.log_entry if init is not None else "",
        end_log_entry=end.log_entry if end is not None else "",
        init_timestamp=init.timestamp if init is not None else 0,
        end_timestamp=end.timestamp if end is not None else 0,
    )


def memory_allocations(
    events: Sequence[BlockingEvent], high_threshold_kb: int
) -> list[MemoryAllocation]:
    """HIGH allocation spans, then AVG, MAX and MIN, from G1 occupancy deltas.

    The first event only opens the first span: the allocation before it is unknown.
    """
    g1_events = [event for event in events if event.kind in ALLOCATION_RATE_KINDS]
    high: list[MemoryAllocation] = []
    max_rate: MemoryAllocation | None = None
    min_rate: MemoryAllocation | None = None
    total_allocated = 0

    for prior, event in zip(g1_events, g1_events[1:]):
        if event.combined is None or prior.combined is None:
            continue
        allocated = event.combined.before - prior.combined.after
        span = event.timestamp - prior.timestamp
        if allocated <= 0 or span <= 0:
            continue
        total_allocated += allocated
        rate = allocated * 1000 // span
        if max_rate is None or max_rate.allocated_kb_per_sec < rate:
            max_rate = _allocation("MAX", rate, prior, event)
        if min_rate is None or min_rate.allocated_kb_per_sec > rate:
            min_rate = _allocation("MIN", rate, prior, event)
        if rate > high_threshold_kb:
            high.append(_allocation("HIGH", rate, prior, event))

    first = g1_events[0] if g1_events else None
    last = g1_events[-1] if g1_events else None
    avg_rate = 0
    if first is not None and last is not None and last.timestamp > first.timestamp:
        avg_rate = total_allocated * 1000 // (last.timestamp - first.timestamp)
    return [
        *high,
        _allocation("AVG", avg_rate, first, last),
        max_rate or _allocation("MAX", 0, None, None),
        min_rate or _allocation("MIN", 0, None, None),
    ]


def run_time_windows(events: Sequence[SafepointEvent], interval_seconds: int) -> list[RunTimeWindow]:
    """Split the run into fixed windows and sum the safepoint time falling in each."""
    interval = interval_seconds * 1_000_000
    interval_ms = interval_seconds * 1000

    def new_window(number: int) -> RunTimeWindow:
        return RunTimeWindow(number=number, start_timestamp=number * interval_ms, interval=interval)

    windows: list[RunTimeWindow] = []
    window = new_window(0)
    for event in events:
        start = event.timestamp * 1000
        end = start + event.duration
        number = start // interval
        window_end = number * interval + interval

        if window.number != number:
            windows.append(window)
            window = new_window(number)

        if end <= window_end:
            window.pause_time += event.duration
            window.log_entries.append(event.log_entry)
            continue

        window.pause_time += window_end - start
        window.log_entries.append(event.log_entry)
        windows.append(window)
        remaining = end - window_end
        while remaining > interval:
            number += 1
            window = new_window(number)
            window.pause_time = interval
            window.log_entries.append(event.log_entry)
            windows.append(window)
            remaining -= interval
        number += 1
        window = new_window(number)
        window.pause_time += remaining
        window.log_entries.append(event.log_entry)
    windows.append(window)
    return windows


def run_time_windows_histogram(
    windows: Sequence[RunTimeWindow], interval_seconds: int, slices: int
) -> dict[str, int]:
    """Count windows by pause time, keyed "<start>-<end>" in ms."""
    slice_length = interval_seconds * 1_000_000 // slices
    histogram: dict[str, int] = {}
    for i in range(slices):
        slice_start = i * slice_length
        slice_end = slice_start + slice_length
        count = sum(1 for w in windows if slice_start < w.pause_time <= slice_end)
        histogram[f"{slice_start // 1000}-{slice_end // 1000}"] = count
    return histogram


# ============================================================
# RULE BATTERY
# ============================================================


class RunAnalysis:
    """Working state of the finalize phase. Rules read and mutate it in order."""

    def __init__(
        self,
        acc: RunAccumulator,
        options: JvmOptions,
        settings: AnalysisSettings,
        start_date: datetime | None,
        today: datetime,
    ) -> None:
        self.acc = acc
        self.options = options
        self.settings = settings
        self.start_date = start_date
        self.today = today
        self.findings = FindingList(acc.findings)
        self.event_kinds = list(acc.event_kinds)
        self.duration = jvm_run_duration(acc, settings)

    @property
    def context(self) -> JvmContext:
        return self.options.context

    def has_kind(self, *kinds: EventKind) -> bool:
        return any(kind in self.event_kinds for kind in kinds)

    def add(self, finding: Finding) -> None:
        if self.findings.add(finding):
            logger.debug("Rule finding: %s", finding.key)


Rule = Callable[[RunAnalysis], None]


def _unidentified_lines(run: RunAnalysis) -> None:
    if not run.acc.unidentified_lines:
        return
    if not run.acc.preprocessed:
        run.add(Finding.ERROR_UNIDENTIFIED_LOG_LINES_PREPARSE)
    elif run.acc.log_ending_unidentified:
        run.add(Finding.INFO_UNIDENTIFIED_LOG_LINE_LAST)
    else:
        run.findings.insert_front(Finding.WARN_UNIDENTIFIED_LOG_LINE_REPORT)


def _infer_serial_g1(run: RunAnalysis) -> None:
    """JDK8 G1 without details logs full collections as plain "Full GC": they are serial."""
    if (
        run.has_kind(EventKind.VERBOSE_GC_OLD)
        and CollectorFamily.G1 in run.options.collectors
        and run.context.version_major == 8
    ):
        if EventKind.G1_FULL_GC_SERIAL not in run.event_kinds:
            run.event_kinds.append(EventKind.G1_FULL_GC_SERIAL)
            run.event_kinds.remove(EventKind.VERBOSE_GC_OLD)
        run.add(Finding.ERROR_SERIAL_GC_G1)


def _dedupe_with_options(run: RunAnalysis) -> None:
    if run.options.has(OptionFinding.WARN_CMS_CLASS_UNLOADING_DISABLED):
        run.findings.remove(Finding.WARN_CMS_CLASS_UNLOADING_NOT_ENABLED)
    if run.options.has(OptionFinding.INFO_GC_SERIAL_ELECTED):
        run.findings.remove(Finding.WARN_SERIAL_GC)


def _partial_log(run: RunAnalysis) -> None:
    event = run.acc.first_log_event
    if event is None:
        return
    timestamp = event.uptime_millis(run.start_date)
    threshold = run.settings.first_timestamp_threshold_seconds * 1000
    if timestamp is not None and timestamp > threshold:
        run.add(Finding.INFO_FIRST_TIMESTAMP_THRESHOLD_EXCEEDED)


def _stopped_time_missing(run: RunAnalysis) -> None:
    if run.acc.blocking_event_count > 0 and not run.has_kind(
        EventKind.APPLICATION_STOPPED_TIME, EventKind.UNIFIED_SAFEPOINT
    ):
        run.add(Finding.WARN_APPLICATION_STOPPED_TIME_MISSING)


def _non_gc_stopped_time(run: RunAnalysis) -> None:
    acc, threshold = run.acc, run.settings.gc_safepoint_ratio_threshold
    throughput = gc_throughput(acc, run.duration)
    if (
        run.has_kind(EventKind.APPLICATION_STOPPED_TIME)
        and gc_stopped_ratio(acc) < threshold
        and stopped_time_throughput(acc, run.duration) != throughput
    ):
        run.add(Finding.WARN_GC_STOPPED_RATIO)
    if (
        run.has_kind(EventKind.UNIFIED_SAFEPOINT)
        and gc_unified_safepoint_ratio(acc) < threshold
        and run.duration > 0
        and unified_safepoint_throughput(acc, run.duration) != throughput
    ):
        run.add(Finding.WARN_GC_SAFEPOINT_RATIO)


def _gc_details_missing(run: RunAnalysis) -> None:
    options = run.options
    if (
        not options.has(OptionFinding.WARN_JDK8_PRINT_GC_DETAILS_MISSING)
        and not options.has(OptionFinding.WARN_JDK8_PRINT_GC_DETAILS_DISABLED)
        and run.has_kind(EventKind.VERBOSE_GC_OLD, EventKind.VERBOSE_GC_YOUNG)
    ):
        options.add(OptionFinding.WARN_JDK8_PRINT_GC_DETAILS_MISSING)


def _swap(run: RunAnalysis) -> None:
    if percent_swap_free(run.acc) < run.settings.swap_free_threshold:
        run.add(Finding.INFO_SWAPPING)
    if run.acc.swap == 0:
        run.add(Finding.INFO_SWAP_DISABLED)


def jvm_memory_bytes(options: JvmOptions) -> int:
    """Max heap + max perm + max metaspace, plus compressed class space when in use."""
    total = (
        option_bytes(options.max_heap_size)
        + option_bytes(options.max_perm_size)
        + option_bytes(options.max_metaspace_size)
    )
    if not is_option_disabled(options.use_compressed_oops) and not is_option_disabled(
        options.use_compressed_class_pointers
    ):
        total += option_bytes(options.compressed_class_space_size)
    return total


def _physical_memory(run: RunAnalysis) -> None:
    physical = run.acc.physical_memory
    if physical != 0 and jvm_memory_bytes(run.options) > physical:
        run.add(Finding.ERROR_PHYSICAL_MEMORY)


def _humongous_old_jdk(run: RunAnalysis) -> None:
    major, minor = run.context.version_major, run.context.version_minor
    if (
        CollectorFamily.G1 in run.options.collectors
        and Finding.INFO_G1_HUMONGOUS_ALLOCATION in run.findings
        and (major == 7 or (major == 8 and minor < 60))
    ):
        run.findings.remove(Finding.INFO_G1_HUMONGOUS_ALLOCATION)
        run.add(Finding.ERROR_G1_HUMONGOUS_JDK_OLD)


def _new_ratio_inverted(run: RunAnalysis) -> None:
    acc = run.acc
    if acc.max_young_space > 0 and acc.max_young_space >= acc.max_old_space:
        run.add(Finding.INFO_NEW_RATIO_INVERTED)


def _cpu_time_counters(run: RunAnalysis) -> None:
    if run.acc.inverted_parallelism_count > 0:
        run.add(Finding.WARN_PARALLELISM_INVERTED)
    if run.acc.inverted_serialism_count > 0:
        run.add(Finding.WARN_SERIALISM_INVERTED)
    if run.acc.sys_gt_user_count > 0:
        run.add(Finding.WARN_SYS_GT_USER)


def _perm_gen_sizing(run: RunAnalysis) -> None:
    if Finding.INFO_PERM_GEN not in run.findings:
        return
    perm_size, max_perm_size = run.options.perm_size, run.options.max_perm_size
    if perm_size is None and max_perm_size is None:
        run.add(Finding.WARN_PERM_SIZE_NOT_SET)
    if perm_size is not None and max_perm_size is not None:
        if option_bytes(perm_size) != option_bytes(max_perm_size):
            run.add(Finding.WARN_PERM_MIN_NOT_EQUAL_MAX)


def _explicit_gc_dedupe(run: RunAnalysis) -> None:
    if run.options.has(OptionFinding.WARN_EXPLICIT_GC_NOT_CONCURRENT) and (
        Finding.ERROR_EXPLICIT_GC_SERIAL_G1 in run.findings
        or Finding.ERROR_EXPLICIT_GC_SERIAL_CMS in run.findings
    ):
        run.options.remove(OptionFinding.WARN_EXPLICIT_GC_NOT_CONCURRENT)


def _command_line_flags(run: RunAnalysis) -> None:
    flag = run.options.print_command_line_flags
    if is_option_disabled(flag):
        run.add(Finding.WARN_PRINT_COMMANDLINE_FLAGS_DISABLED)
    elif (
        flag is None
        and not any(kind.is_unified for kind in run.event_kinds)
        and run.event_kinds
        and not run.has_kind(EventKind.HEADER_COMMAND_LINE_FLAGS)
    ):
        run.add(Finding.WARN_PRINT_COMMANDLINE_FLAGS)


def _gc_cause(run: RunAnalysis) -> None:
    if Finding.WARN_PRINT_GC_CAUSE_NOT_ENABLED not in run.findings:
        return
    cause = run.options.print_gc_cause
    if cause is None and run.context.version_major == 7:
        run.add(Finding.WARN_PRINT_GC_CAUSE_MISSING)
        run.findings.remove(Finding.WARN_PRINT_GC_CAUSE_NOT_ENABLED)
    if is_option_disabled(cause):
        run.add(Finding.WARN_PRINT_GC_CAUSE_DISABLED)
        run.findings.remove(Finding.WARN_PRINT_GC_CAUSE_NOT_ENABLED)


# Observed output implies the option even when the options text is missing.
_KIND_IMPLIES_OPTION: tuple[tuple[EventKind, OptionFinding], ...] = (
    (EventKind.APPLICATION_CONCURRENT_TIME, OptionFinding.INFO_PRINT_GC_APPLICATION_CONCURRENT_TIME),
    (EventKind.CLASS_UNLOADING, OptionFinding.INFO_TRACE_CLASS_UNLOADING),
    (EventKind.FLS_STATISTICS, OptionFinding.INFO_JDK8_PRINT_FLS_STATISTICS),
    (EventKind.TENURING_DISTRIBUTION, OptionFinding.INFO_JDK8_PRINT_TENURING_DISTRIBUTION),
    (EventKind.HEAP_AT_GC, OptionFinding.INFO_JDK8_PRINT_HEAP_AT_GC),
)


def _logging_options_from_kinds(run: RunAnalysis) -> None:
    options = run.options
    for kind, finding in _KIND_IMPLIES_OPTION:
        if run.has_kind(kind):
            options.add(finding)
    if PreprocessEvent.REFERENCE_GC in run.acc.preprocess_events:
        options.add(OptionFinding.INFO_JDK8_PRINT_REFERENCE_GC_ENABLED)
    if run.has_kind(EventKind.CLASS_HISTOGRAM) and not any(
        options.has(finding)
        for finding in (
            OptionFinding.WARN_CLASS_HISTOGRAM,
            OptionFinding.WARN_CLASS_HISTOGRAM_BEFORE_FULL_GC,
            OptionFinding.WARN_CLASS_HISTOGRAM_AFTER_FULL_GC,
        )
    ):
        run.add(Finding.WARN_CLASS_HISTOGRAM)


def _fixed_signals(run: RunAnalysis) -> None:
    if run.has_kind(EventKind.APPLICATION_LOGGING):
        run.add(Finding.WARN_APPLICATION_LOGGING)
    if run.has_kind(EventKind.OOME_METASPACE):
        run.add(Finding.ERROR_OOME_METASPACE)
    if run.has_kind(EventKind.THREAD_DUMP):
        run.add(Finding.INFO_THREAD_DUMP)
    if run.has_kind(EventKind.GC_LOCKER_RETRY):
        run.add(Finding.ERROR_GC_LOCKER_RETRY)
    elif Trigger.GCLOCKER_INITIATED_GC in run.acc.triggers:
        run.add(Finding.WARN_GC_LOCKER)


def _par_new_disabled(run: RunAnalysis) -> None:
    if run.has_kind(EventKind.SERIAL_NEW) and CollectorFamily.CMS in run.options.collectors:
        run.findings.remove(Finding.WARN_SERIAL_GC)
        run.options.add(OptionFinding.ERROR_JDK8_CMS_PAR_NEW_DISABLED)


def _ancient_jdk(run: RunAnalysis) -> None:
    build_date = run.context.build_date
    if build_date is not None and day_diff(build_date, run.today) > run.settings.ancient_jdk_days:
        run.add(Finding.INFO_JDK_ANCIENT)


def _safepoint_stats(run: RunAnalysis) -> None:
    last = run.acc.last_safepoint_event
    major, minor = run.context.version_major, run.context.version_minor
    if (
        last is not None
        and SAFEPOINT_JDK17_PATTERN.match(last.log_entry)
        and not ((major == 17 and minor >= 8) or major >= 21)
    ):
        run.add(Finding.WARN_SAFEPOINT_STATS)


RULES: tuple[Rule, ...] = (
    _unidentified_lines,
    _infer_serial_g1,
    _dedupe_with_options,
    _partial_log,
    _stopped_time_missing,
    _non_gc_stopped_time,
    _gc_details_missing,
    _swap,
    _physical_memory,
    _humongous_old_jdk,
    _new_ratio_inverted,
    _cpu_time_counters,
    _perm_gen_sizing,
    _explicit_gc_dedupe,
    _command_line_flags,
    _gc_cause,
    _logging_options_from_kinds,
    _fixed_signals,
    _par_new_disabled,
    _ancient_jdk,
    _safepoint_stats,
)


def analysis_items(run: RunAnalysis) -> list[tuple[str, str]]:
    """Core findings then option findings as (key, literal) pairs."""
    items: list[tuple[str, str]] = []
    for finding in run.findings:
        literal = finding.literal
        if finding is Finding.INFO_JDK_ANCIENT and run.context.build_date is not None:
            years = years_literal(day_diff(run.context.build_date, run.today))
            head, sep, tail = literal.rpartition(ANCIENT_PLACEHOLDER)
            if sep:
                literal = f"{head}{years} years{tail}"
        items.append((finding.key, literal))
    for finding in run.options.findings:
        # JDK8 flag headers never include logging options
        if finding is OptionFinding.INFO_GC_LOG_STDOUT and run.context.version_major <= 8:
            continue
        items.append((finding.key, finding.literal))
    return items


# ============================================================
# ENTRY POINTS
# ============================================================


def analyze(
    acc: RunAccumulator,
    jvm_options: str | None = None,
    *,
    settings: AnalysisSettings | None = None,
    start_date: datetime | None = None,
    today: datetime | None = None,
) -> RunSnapshot:
    """Run the finalize phase over a filled accumulator.

    Args:
        acc: The accumulator from `ingest` (left unchanged)
        jvm_options: JVM options text, used when the log has no flags header
        settings: Analysis thresholds
        start_date: JVM start date, to resolve datestamps and report wall-clock bottlenecks
        today: Reference date for the JDK age check (defaults to now)

    Returns:
        The immutable run snapshot
    """
    settings = settings or AnalysisSettings()
    today = today or datetime.now()

    context = acc.context.model_copy(deep=True)
    if jvm_options is not None and context.options is None:
        context.options = jvm_options
    options = JvmOptions(context)

    run = RunAnalysis(acc, options, settings, start_date, today)
    first = first_event(acc)
    datestamps = has_datestamps(first)

    if not datestamps and start_date is None and acc.log_file_date is not None and first is not None:
        # Approximate: log file creation date minus the first timestamp
        run.start_date = acc.log_file_date - timedelta(milliseconds=first.timestamp)
        run.findings.insert_front(Finding.WARN_DATESTAMP_APPROXIMATE)

    if CollectorFamily.CMS in options.collectors and acc.cms_incremental_mode:
        options.add(OptionFinding.INFO_CMS_INCREMENTAL_MODE)

    options.do_analysis()
    for rule in RULES:
        rule(run)

    windows = run_time_windows(acc.safepoint_events, settings.window_interval_seconds)
    histogram = run_time_windows_histogram(
        windows, settings.window_interval_seconds, settings.window_slices
    )
    duration = run.duration

    snapshot = RunSnapshot(
        analysis=analysis_items(run),
        event_kinds=run.event_kinds,
        triggers=list(acc.triggers),
        collectors=list(context.collectors),
        preprocess_events=list(acc.preprocess_events),
        preprocessed=acc.preprocessed,
        version_major=context.version_major,
        version_minor=context.version_minor,
        release_string=context.release_string,
        vm_info=acc.vm_info,
        jvm_options=context.options,
        start_date=run.start_date,
        has_datestamps=datestamps,
        blocking_event_count=acc.blocking_event_count,
        gc_pause_total=acc.duration_total,
        gc_pause_max=acc.duration_max,
        first_gc_event=acc.first_gc_event,
        last_gc_event=acc.last_gc_event,
        max_heap_occupancy=acc.max_heap_occupancy,
        max_heap_space=acc.max_heap_space,
        max_heap_after_gc=acc.max_heap_after_gc,
        max_perm_occupancy=acc.max_perm_occupancy,
        max_perm_space=acc.max_perm_space,
        max_perm_after_gc=acc.max_perm_after_gc,
        max_young_space=acc.max_young_space,
        max_old_space=acc.max_old_space,
        max_heap_occupancy_non_blocking=acc.max_heap_occupancy_non_blocking,
        max_heap_space_non_blocking=acc.max_heap_space_non_blocking,
        max_perm_occupancy_non_blocking=acc.max_perm_occupancy_non_blocking,
        max_perm_space_non_blocking=acc.max_perm_space_non_blocking,
        ext_root_scanning_time_total=acc.ext_root_scanning_time_total,
        ext_root_scanning_time_max=acc.ext_root_scanning_time_max,
        other_time_total=acc.other_time_total,
        other_time_max=acc.other_time_max,
        parallel_count=acc.parallel_count,
        inverted_parallelism_count=acc.inverted_parallelism_count,
        worst_inverted_parallelism_event=acc.worst_inverted_parallelism_event,
        serial_count=acc.serial_count,
        inverted_serialism_count=acc.inverted_serialism_count,
        worst_inverted_serialism_event=acc.worst_inverted_serialism_event,
        sys_gt_user_count=acc.sys_gt_user_count,
        worst_sys_gt_user_event=acc.worst_sys_gt_user_event,
        first_safepoint_event=acc.first_safepoint_event,
        last_safepoint_event=acc.last_safepoint_event,
        stopped_time_event_count=acc.stopped_time_event_count,
        stopped_time_total=acc.stopped_time_total,
        stopped_time_max=acc.stopped_time_max,
        unified_safepoint_event_count=acc.unified_safepoint_event_count,
        unified_safepoint_time_total=acc.unified_safepoint_time_total,
        unified_safepoint_time_max=acc.unified_safepoint_time_max,
        safepoint_summaries=[s.model_copy() for s in acc.safepoint_summaries.values()],
        first_event=first,
        last_event=last_event(acc),
        first_log_event=acc.first_log_event,
        memory=acc.memory,
        physical_memory=acc.physical_memory,
        physical_memory_free=acc.physical_memory_free,
        swap=acc.swap,
        swap_free=acc.swap_free,
        jvm_run_duration=duration,
        gc_throughput=gc_throughput(acc, duration),
        stopped_time_throughput=stopped_time_throughput(acc, duration),
        unified_safepoint_throughput=unified_safepoint_throughput(acc, duration),
        gc_stopped_ratio=gc_stopped_ratio(acc),
        gc_unified_safepoint_ratio=gc_unified_safepoint_ratio(acc),
        percent_swap_free=percent_swap_free(acc),
        new_ratio=new_ratio(acc),
        gc_bottlenecks=bottlenecks(acc.blocking_events, settings.throughput_threshold, start_date),
        safepoint_bottlenecks=bottlenecks(
            acc.safepoint_events, settings.throughput_threshold, start_date
        ),
        allocations=memory_allocations(acc.blocking_events, settings.high_allocation_threshold_kb),
        run_time_windows=windows,
        run_time_windows_histogram=histogram,
        unidentified_lines=list(acc.unidentified_lines),
        log_ending_unidentified=acc.log_ending_unidentified,
        last_line_unprocessed=acc.last_line_unprocessed,
    )
    logger.info(
        "Analysis complete: %d findings, GC throughput %d%%",
        len(snapshot.analysis),
        snapshot.gc_throughput,
    )
    return snapshot


def analyze_log(
    lines: Iterable[str],
    jvm_options: str | None = None,
    *,
    reorder: bool = False,
    settings: AnalysisSettings | None = None,
    start_date: datetime | None = None,
    today: datetime | None = None,
    preprocess: bool = True,
) -> RunSnapshot:
    """Normalize, classify, fold and analyze one log.

    Raises:
        TimeWarpError: If blocking events go back in time and reorder is off
    """
    settings = settings or AnalysisSettings()
    acc = ingest(lines, reorder=reorder, settings=settings, preprocess=preprocess)
    return analyze(acc, jvm_options, settings=settings, start_date=start_date, today=today)
