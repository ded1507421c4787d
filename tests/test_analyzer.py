from datetime import datetime

from gc_diagnose.analyzer import (
    BOTTLENECK_GAP,
    analyze,
    analyze_log,
    bottlenecks,
    datestamp_entry,
    is_bottleneck,
    memory_allocations,
    run_time_windows,
    run_time_windows_histogram,
)
from gc_diagnose.aggregator import RunAccumulator, ingest
from gc_diagnose.classifier import parse_log_line
from gc_diagnose.models import (
    BlockingEvent,
    EventKind,
    Finding,
    Occupancy,
    SafepointEvent,
    Trigger,
)

TODAY = datetime(2022, 5, 28, 14, 28, 22)

VM_INFO = (
    "OpenJDK 64-Bit Server VM (25.242-b08) for linux-amd64 JRE (1.8.0_242-b08), "
    "built on Jan 28 2020 14:28:22 by \"mockbuild\" with gcc 4.8.5"
)
SERIAL_OLD = (
    "2.100: [Full GC (Allocation Failure) 2.100: [Tenured: 0K->1234K(174784K), 0.0300000 secs] "
    "5000K->1234K(253440K), [Metaspace: 2900K->2900K(1056768K)], 0.0310000 secs] "
    "[Times: user=0.03 sys=0.00, real=0.03 secs]"
)
G1_FULL_EXPLICIT = (
    "2.000: [Full GC (System.gc())  3060K->2850K(10M), 0.0123000 secs]"
    "[Eden: 1024K(3072K)->0B(3072K) Survivors: 0B->0B Heap: 3060K(10M)->2850K(10M)], "
    "[Metaspace: 2900K->2900K(1056768K)] [Times: user=0.02 sys=0.00, real=0.01 secs]"
)


def parallel_scavenge(uptime: str) -> str:
    return (
        f"{uptime}: [GC (Allocation Failure) [PSYoungGen: 65536K->10720K(76288K)] "
        "65536K->10728K(251392K), 0.0151290 secs] [Times: user=0.05 sys=0.01, real=0.02 secs]"
    )


def pause(timestamp: int, duration: int, entry: str | None = None) -> BlockingEvent:
    return BlockingEvent(
        kind=EventKind.PARALLEL_SCAVENGE,
        log_entry=entry or f"pause at {timestamp}",
        timestamp=timestamp,
        duration=duration,
    )


def g1_pause(timestamp: int, before: int, after: int) -> BlockingEvent:
    return BlockingEvent(
        kind=EventKind.UNIFIED_G1_YOUNG_PAUSE,
        log_entry=f"g1 pause at {timestamp}",
        timestamp=timestamp,
        duration=1000,
        combined=Occupancy(before=before, after=after, space=8192),
    )


def safepoint(timestamp: int, duration: int) -> SafepointEvent:
    return SafepointEvent(
        kind=EventKind.APPLICATION_STOPPED_TIME,
        log_entry=f"safepoint at {timestamp}",
        timestamp=timestamp,
        duration=duration,
    )


# ============================================================
# BOTTLENECKS
# ============================================================


def test_is_bottleneck_uses_interval_between_pause_ends():
    first, second = pause(1000, 500_000), pause(2000, 900_000)
    assert is_bottleneck(second, first, 90)
    assert not is_bottleneck(pause(60_000, 10_000), second, 90)


def test_overlapping_events_are_not_bottlenecks():
    assert not is_bottleneck(pause(1100, 1000), pause(1000, 500_000), 90)


def test_bottlenecks_pairs_and_gap_marker():
    events = [
        pause(1000, 500_000),
        pause(2000, 900_000),
        pause(60_000, 10_000),
        pause(60_100, 500_000),
    ]
    assert bottlenecks(events, 90) == [
        "pause at 1000",
        "pause at 2000",
        BOTTLENECK_GAP,
        "pause at 60000",
        "pause at 60100",
    ]


def test_bottleneck_run_is_contiguous():
    events = [pause(1000, 500_000), pause(2000, 900_000), pause(3000, 900_000)]
    assert bottlenecks(events, 90) == ["pause at 1000", "pause at 2000", "pause at 3000"]


def test_no_bottlenecks_with_zero_goal():
    events = [pause(1000, 500_000), pause(2000, 900_000)]
    assert bottlenecks(events, 0) == []


def test_datestamp_entry_rewrites_uptime():
    start = datetime(2023, 1, 1, 12, 0, 0)
    assert datestamp_entry("10.392: [GC pause]", start) == "2023-01-01T12:00:10.392: [GC pause]"


# ============================================================
# ALLOCATION RATES AND WINDOWS
# ============================================================


def test_memory_allocations():
    events = [g1_pause(1000, 1000, 200), g1_pause(3000, 4200, 200), g1_pause(4000, 1200, 300)]
    allocations = memory_allocations(events, high_threshold_kb=1500)
    assert [a.allocation_type for a in allocations] == ["HIGH", "AVG", "MAX", "MIN"]
    high, avg, max_rate, min_rate = allocations
    assert high.allocated_kb_per_sec == 2000
    assert high.init_log_entry == "g1 pause at 1000"
    assert avg.allocated_kb_per_sec == 5000 * 1000 // 3000
    assert max_rate.allocated_kb_per_sec == 2000
    assert min_rate.allocated_kb_per_sec == 1000
    assert str(min_rate) == "MIN* Allocation Rate: 1000K/sec"


def test_memory_allocations_ignore_other_collectors():
    allocations = memory_allocations([pause(1000, 1000), pause(2000, 1000)], high_threshold_kb=1)
    assert [a.allocated_kb_per_sec for a in allocations] == [0, 0, 0]


def test_run_time_windows_split_across_boundary():
    windows = run_time_windows([safepoint(500, 100_000), safepoint(3900, 300_000)], 2)
    assert [w.number for w in windows] == [0, 1, 2]
    assert [w.start_timestamp for w in windows] == [0, 2000, 4000]
    assert [w.pause_time for w in windows] == [100_000, 100_000, 200_000]
    assert windows[2].log_entries == ["safepoint at 3900"]


def test_run_time_windows_histogram():
    windows = run_time_windows([safepoint(500, 100_000), safepoint(3900, 300_000)], 2)
    histogram = run_time_windows_histogram(windows, 2, 5)
    assert histogram == {
        "0-400": 3,
        "400-800": 0,
        "800-1200": 0,
        "1200-1600": 0,
        "1600-2000": 0,
    }


# ============================================================
# RUN ANALYSIS
# ============================================================


def test_throughput_without_blocking_events():
    snapshot = analyze_log(
        [
            "1.000: Total time for which application threads were stopped: 0.0100000 seconds",
            "2.000: Total time for which application threads were stopped: 0.0050000 seconds",
        ],
        today=TODAY,
    )
    assert snapshot.gc_throughput == 100
    assert snapshot.jvm_run_duration == 2005
    assert snapshot.stopped_time_throughput == 99
    assert not snapshot.has_analysis("warn.application.stopped.time.missing")


def test_serial_warning_dropped_when_serial_collector_elected():
    snapshot = analyze_log([SERIAL_OLD], "-XX:+UseSerialGC", today=TODAY)
    assert snapshot.has_analysis("info.gc.serial.elected")
    assert not snapshot.has_analysis("warn.serial.gc")
    assert snapshot.jvm_options == "-XX:+UseSerialGC"


def test_serial_warning_without_options():
    snapshot = analyze_log([SERIAL_OLD], today=TODAY)
    assert snapshot.has_analysis("warn.serial.gc")


def test_explicit_serial_g1_replaces_not_concurrent_option_finding():
    snapshot = analyze_log([G1_FULL_EXPLICIT], "-XX:+UseG1GC", today=TODAY)
    assert snapshot.has_analysis("error.explicit.gc.serial.g1")
    assert not snapshot.has_analysis("warn.explicit.gc.not.concurrent")
    assert snapshot.worst_level == "error"


def test_unidentified_line_findings():
    report = analyze_log(["garbage", parallel_scavenge("1.000")], today=TODAY)
    assert report.analysis_keys[0] == "warn.unidentified.log.line.report"

    last = analyze_log([parallel_scavenge("1.000"), "garbage"], today=TODAY)
    assert last.has_analysis("info.unidentified.log.line.last")

    preparse = analyze_log(["garbage"], today=TODAY, preprocess=False)
    assert preparse.has_analysis("error.unidentified.log.lines.preparse")


def test_partial_log():
    snapshot = analyze_log([parallel_scavenge("100.000")], today=TODAY)
    assert snapshot.has_analysis("info.first.timestamp.threshold.exceeded")
    assert snapshot.has_analysis("warn.application.stopped.time.missing")


def test_ancient_jdk_literal():
    snapshot = analyze_log([VM_INFO, parallel_scavenge("1.000")], today=TODAY)
    assert snapshot.version_major == 8
    assert snapshot.analysis_literal("info.jdk.ancient") == (
        "The JDK build is 2.3 years old. Consider upgrading."
    )


def test_analyze_leaves_accumulator_untouched():
    acc = ingest([SERIAL_OLD])
    analyze(acc, "-XX:+UseSerialGC", today=TODAY)
    assert acc.context.options is None
    assert acc.findings.keys() == ["warn.serial.gc"]


def cms_serial_old(trigger: str) -> str:
    return (
        f"1.000: [Full GC ({trigger}) 1.000: [CMS: 0K->1000K(2000K), 0.0100000 secs] "
        "3000K->1000K(4000K), [Metaspace: 2900K->2900K(1056768K)], 0.0110000 secs] "
        "[Times: user=0.01 sys=0.00, real=0.01 secs]"
    )


def test_explicit_serial_cms_keeps_only_specific_finding():
    explicit = analyze_log([cms_serial_old("System.gc()")], "-XX:+UseConcMarkSweepGC", today=TODAY)
    assert explicit.has_analysis("error.explicit.gc.serial.cms")
    assert not explicit.has_analysis("error.serial.gc.cms")
    assert not explicit.has_analysis("warn.explicit.gc.not.concurrent")

    allocation = analyze_log([cms_serial_old("Allocation Failure")], today=TODAY)
    assert allocation.has_analysis("error.serial.gc.cms")
    assert not allocation.has_analysis("error.explicit.gc.serial.cms")


def test_bottleneck_scenario_pair():
    first = pause(1000, 50_000, "E1")
    second = pause(2000, 950_000, "E2")
    assert bottlenecks([first, second], 90) == ["E1", "E2"]


def test_analysis_is_repeatable():
    lines = ["garbage", SERIAL_OLD, parallel_scavenge("3.000")]
    first = analyze_log(lines, today=TODAY)
    second = analyze_log(lines, today=TODAY)
    assert first.analysis == second.analysis
    assert first.gc_pause_total == second.gc_pause_total
    assert first.gc_throughput == second.gc_throughput


# ============================================================
# FINALIZE RULES
# ============================================================

GIB = 1024 * 1024 * 1024
JVM_MEMORY_OPTIONS = "-Xmx1g -XX:MaxMetaspaceSize=512m -XX:CompressedClassSpaceSize=1g"
JDK17_SAFEPOINT = (
    '[2023-08-25T02:15:57.862-0400][3.161s][info][safepoint] Safepoint "G1CollectForAllocation", '
    "Time since last: 1037449 ns, Reaching safepoint: 1052 ns, Cleanup: 2205 ns, "
    "At safepoint: 9045817 ns, Total: 9049074 ns"
)


def jdk(major: int, minor: int, **fields) -> RunAccumulator:
    acc = RunAccumulator(**fields)
    acc.context.version_major = major
    acc.context.version_minor = minor
    return acc


def test_swap_rules():
    swapping = analyze(RunAccumulator(swap=1000, swap_free=900), today=TODAY)
    assert swapping.has_analysis("info.swapping")
    assert not swapping.has_analysis("info.swap.disabled")

    healthy = analyze(RunAccumulator(swap=1000, swap_free=1000), today=TODAY)
    assert not healthy.has_analysis("info.swapping")
    assert not healthy.has_analysis("info.swap.disabled")

    disabled = analyze(RunAccumulator(), today=TODAY)
    assert disabled.has_analysis("info.swap.disabled")
    assert not disabled.has_analysis("info.swapping")


def test_physical_memory_counts_compressed_class_space():
    acc = RunAccumulator(physical_memory=2 * GIB)
    assert analyze(acc, JVM_MEMORY_OPTIONS, today=TODAY).has_analysis("error.physical.memory")


def test_physical_memory_skips_class_space_without_compression():
    acc = RunAccumulator(physical_memory=2 * GIB)
    for flag in ("-XX:-UseCompressedOops", "-XX:-UseCompressedClassPointers"):
        snapshot = analyze(acc, f"{JVM_MEMORY_OPTIONS} {flag}", today=TODAY)
        assert not snapshot.has_analysis("error.physical.memory")


def test_physical_memory_unknown():
    snapshot = analyze(RunAccumulator(), JVM_MEMORY_OPTIONS, today=TODAY)
    assert not snapshot.has_analysis("error.physical.memory")


def test_humongous_allocation_on_old_jdk():
    old = jdk(8, 45)
    old.add_finding(Finding.INFO_G1_HUMONGOUS_ALLOCATION)
    snapshot = analyze(old, "-XX:+UseG1GC", today=TODAY)
    assert snapshot.has_analysis("error.g1.humongous.jdk.old")
    assert not snapshot.has_analysis("info.g1.humongous.allocation")

    fixed = jdk(8, 60)
    fixed.add_finding(Finding.INFO_G1_HUMONGOUS_ALLOCATION)
    snapshot = analyze(fixed, "-XX:+UseG1GC", today=TODAY)
    assert snapshot.has_analysis("info.g1.humongous.allocation")
    assert not snapshot.has_analysis("error.g1.humongous.jdk.old")


def test_new_ratio_inverted():
    inverted = RunAccumulator(max_young_space=1000, max_old_space=800)
    assert analyze(inverted, today=TODAY).has_analysis("info.new.ratio.inverted")

    normal = RunAccumulator(max_young_space=1000, max_old_space=3000)
    assert not analyze(normal, today=TODAY).has_analysis("info.new.ratio.inverted")


def test_cpu_time_counters():
    acc = RunAccumulator(inverted_parallelism_count=1, inverted_serialism_count=2, sys_gt_user_count=3)
    snapshot = analyze(acc, today=TODAY)
    assert snapshot.has_analysis("warn.parallelism.inverted")
    assert snapshot.has_analysis("warn.serialism.inverted")
    assert snapshot.has_analysis("warn.sys.gt.user")

    quiet = analyze(RunAccumulator(), today=TODAY)
    for key in ("warn.parallelism.inverted", "warn.serialism.inverted", "warn.sys.gt.user"):
        assert not quiet.has_analysis(key)


def test_perm_gen_sizing():
    def perm_run(options: str | None):
        acc = RunAccumulator()
        acc.add_finding(Finding.INFO_PERM_GEN)
        return analyze(acc, options, today=TODAY)

    unset = perm_run(None)
    assert unset.has_analysis("warn.perm.size.not.set")

    uneven = perm_run("-XX:PermSize=128m -XX:MaxPermSize=256m")
    assert uneven.has_analysis("warn.perm.min.not.equal.max")
    assert not uneven.has_analysis("warn.perm.size.not.set")

    even = perm_run("-XX:PermSize=256m -XX:MaxPermSize=268435456")
    assert not even.has_analysis("warn.perm.min.not.equal.max")

    metaspace = analyze(RunAccumulator(), today=TODAY)
    assert not metaspace.has_analysis("warn.perm.size.not.set")


def test_gc_cause_depends_on_jdk():
    def cause_run(major: int, options: str | None, flagged: bool = True):
        acc = jdk(major, 0)
        if flagged:
            acc.add_finding(Finding.WARN_PRINT_GC_CAUSE_NOT_ENABLED)
        return analyze(acc, options, today=TODAY)

    jdk7 = cause_run(7, None)
    assert jdk7.has_analysis("warn.print.gc.cause.missing")
    assert not jdk7.has_analysis("warn.print.gc.cause.not.enabled")

    jdk8 = cause_run(8, None)
    assert jdk8.has_analysis("warn.print.gc.cause.not.enabled")
    assert not jdk8.has_analysis("warn.print.gc.cause.missing")

    disabled = cause_run(8, "-XX:-PrintGCCause")
    assert disabled.has_analysis("warn.print.gc.cause.disabled")
    assert not disabled.has_analysis("warn.print.gc.cause.not.enabled")

    unflagged = cause_run(8, "-XX:-PrintGCCause", flagged=False)
    assert not unflagged.has_analysis("warn.print.gc.cause.disabled")


def test_fixed_signals():
    acc = RunAccumulator()
    for kind in (EventKind.APPLICATION_LOGGING, EventKind.OOME_METASPACE, EventKind.THREAD_DUMP):
        acc.add_kind(kind)
    snapshot = analyze(acc, today=TODAY)
    assert snapshot.has_analysis("warn.application.logging")
    assert snapshot.has_analysis("error.oome.metaspace")
    assert snapshot.has_analysis("info.thread.dump")

    quiet = analyze(RunAccumulator(), today=TODAY)
    for key in ("warn.application.logging", "error.oome.metaspace", "info.thread.dump"):
        assert not quiet.has_analysis(key)


def test_gc_locker_retry_outranks_trigger():
    locker = RunAccumulator(triggers=[Trigger.GCLOCKER_INITIATED_GC])
    snapshot = analyze(locker, today=TODAY)
    assert snapshot.has_analysis("warn.gc.locker")

    locker.add_kind(EventKind.GC_LOCKER_RETRY)
    snapshot = analyze(locker, today=TODAY)
    assert snapshot.has_analysis("error.gc.locker.retry")
    assert not snapshot.has_analysis("warn.gc.locker")


def test_safepoint_stats_before_jdk17u8():
    event = parse_log_line(JDK17_SAFEPOINT)
    assert analyze(
        jdk(17, 2, safepoint_events=[event]), today=TODAY
    ).has_analysis("warn.safepoint.stats")

    for major, minor in ((17, 8), (21, 0)):
        snapshot = analyze(jdk(major, minor, safepoint_events=[event]), today=TODAY)
        assert not snapshot.has_analysis("warn.safepoint.stats")

    assert not analyze(jdk(17, 2), today=TODAY).has_analysis("warn.safepoint.stats")
