import pytest

from gc_diagnose.aggregator import RunAccumulator, fold, ingest
from gc_diagnose.classifier import parse_log_line
from gc_diagnose.models import (
    AnalysisSettings,
    CollectorFamily,
    EventKind,
    Finding,
    TimeWarpError,
)


def parallel_scavenge(uptime: str, secs: str = "0.0151290", times: str = "user=0.05 sys=0.01, real=0.02") -> str:
    return (
        f"{uptime}: [GC (Allocation Failure) [PSYoungGen: 65536K->10720K(76288K)] "
        f"65536K->10728K(251392K), {secs} secs] [Times: {times} secs]"
    )


def serial_old(
    trigger: str = "Allocation Failure",
    uptime: str = "2.100",
    times: str = "user=0.03 sys=0.00, real=0.03",
) -> str:
    return (
        f"{uptime}: [Full GC ({trigger}) {uptime}: [Tenured: 0K->1234K(174784K), 0.0300000 secs] "
        "5000K->1234K(253440K), [Metaspace: 2900K->2900K(1056768K)], 0.0310000 secs] "
        f"[Times: {times} secs]"
    )


def unified_safepoint(uptime: str, operation: str, total: int) -> str:
    return (
        f'[{uptime}s][info][safepoint] Safepoint "{operation}", Time since last: 1037449 ns, '
        f"Reaching safepoint: 1052 ns, Cleanup: 2205 ns, At safepoint: 9045817 ns, Total: {total} ns"
    )


def test_out_of_order_blocking_events_raise():
    lines = [parallel_scavenge("10.392"), parallel_scavenge("5.000")]
    with pytest.raises(TimeWarpError) as excinfo:
        ingest(lines)
    assert excinfo.value.prior_entry == lines[0]
    assert excinfo.value.current_entry == lines[1]


def test_reorder_accepts_and_sorts():
    acc = ingest([parallel_scavenge("10.392"), parallel_scavenge("5.000")], reorder=True)
    assert [event.timestamp for event in acc.blocking_events] == [5000, 10392]
    assert acc.first_gc_event.timestamp == 5000


def test_reject_limit_caps_unidentified_lines():
    acc = ingest([f"garbage line {n}" for n in range(10_000)])
    assert len(acc.unidentified_lines) == 1000
    assert acc.unidentified_lines[0] == "garbage line 0"
    assert acc.log_ending_unidentified


def test_custom_reject_limit():
    acc = ingest(["garbage"] * 20, settings=AnalysisSettings(reject_limit=5))
    assert len(acc.unidentified_lines) == 5


def test_identified_event_clears_unidentified_ending():
    acc = ingest(["garbage", parallel_scavenge("10.392")])
    assert acc.unidentified_lines == ["garbage"]
    assert not acc.log_ending_unidentified


def test_blocking_totals_and_maxima():
    acc = ingest(
        [
            parallel_scavenge("1.000", secs="0.0100000"),
            parallel_scavenge("2.000", secs="0.0300000"),
        ]
    )
    assert acc.blocking_event_count == 2
    assert acc.duration_total == 40000
    assert acc.duration_max == 30000
    assert acc.max_heap_occupancy == 65536
    assert acc.max_heap_space == 251392
    assert acc.max_heap_after_gc == 10728
    assert acc.max_young_space == 76288
    assert acc.event_kinds == [EventKind.PARALLEL_SCAVENGE]
    assert acc.triggers[0].literal == "Allocation Failure"
    assert CollectorFamily.PARALLEL_SCAVENGE in acc.context.collectors


def test_serial_old_allocation_failure():
    acc = ingest([serial_old()])
    assert Finding.WARN_SERIAL_GC in acc.findings
    assert acc.max_perm_space == 1056768


def test_serial_old_explicit_gc_is_not_a_serial_warning():
    acc = ingest([serial_old("System.gc()")])
    assert Finding.WARN_SERIAL_GC not in acc.findings
    assert Finding.ERROR_EXPLICIT_GC_SERIAL_CMS not in acc.findings


def test_sys_greater_than_user():
    acc = ingest([parallel_scavenge("1.000", times="user=0.01 sys=0.05, real=0.02")])
    assert acc.parallel_count == 1
    assert acc.sys_gt_user_count == 1
    assert acc.worst_sys_gt_user_event is acc.blocking_events[0]


def test_inverted_parallelism():
    acc = ingest([parallel_scavenge("1.000", times="user=0.01 sys=0.00, real=0.05")])
    assert acc.inverted_parallelism_count == 1
    assert acc.worst_inverted_parallelism_event.parallelism == 20


def test_worst_inverted_parallelism_keeps_first_on_tie():
    lines = [
        parallel_scavenge("1.000", times="user=0.01 sys=0.00, real=0.05"),
        parallel_scavenge("2.000", times="user=0.01 sys=0.00, real=0.05"),
    ]
    acc = ingest(lines)
    assert acc.inverted_parallelism_count == 2
    assert acc.worst_inverted_parallelism_event.log_entry == lines[0]

    worse = parallel_scavenge("3.000", times="user=0.01 sys=0.00, real=0.10")
    acc = ingest(lines + [worse])
    assert acc.worst_inverted_parallelism_event.log_entry == worse


def test_inverted_serialism():
    lines = [
        serial_old(uptime="1.000", times="user=0.01 sys=0.00, real=0.50"),
        serial_old(uptime="2.000", times="user=0.01 sys=0.00, real=0.50"),
        # Wall time within the slack of CPU time
        serial_old(uptime="3.000", times="user=0.01 sys=0.00, real=0.05"),
    ]
    acc = ingest(lines)
    assert acc.serial_count == 3
    assert acc.inverted_serialism_count == 2
    assert acc.worst_inverted_serialism_event.log_entry == lines[0]
    assert acc.inverted_parallelism_count == 0


def test_worst_sys_gt_user_keeps_first_on_tie():
    lines = [
        parallel_scavenge("1.000", times="user=0.01 sys=0.05, real=0.02"),
        parallel_scavenge("2.000", times="user=0.01 sys=0.05, real=0.02"),
    ]
    acc = ingest(lines)
    assert acc.sys_gt_user_count == 2
    assert acc.worst_sys_gt_user_event.log_entry == lines[0]


def test_safepoint_summaries_by_operation():
    acc = ingest(
        [
            unified_safepoint("1.000", "G1CollectForAllocation", 2000),
            unified_safepoint("2.000", "G1CollectForAllocation", 6000),
            unified_safepoint("3.000", "Cleanup", 1000),
        ]
    )
    assert acc.unified_safepoint_event_count == 3
    assert acc.unified_safepoint_time_total == 9000
    assert acc.unified_safepoint_time_max == 6000
    summary = acc.safepoint_summaries["G1CollectForAllocation"]
    assert (summary.count, summary.total, summary.max) == (2, 8000, 6000)


def test_stopped_time_totals():
    acc = ingest(
        [
            "1.000: Total time for which application threads were stopped: 0.0100000 seconds",
            "2.000: Total time for which application threads were stopped: 0.0050000 seconds",
        ]
    )
    assert acc.stopped_time_event_count == 2
    assert acc.stopped_time_total == 15000
    assert acc.stopped_time_max == 10000


def test_headers_fill_context():
    acc = ingest(
        [
            "CommandLine flags: -XX:+UseParallelGC -Xmx2g",
            "Memory: 4k page, physical 16333492k(8165304k free), swap 8257532k(8257532k free)",
        ]
    )
    assert acc.context.options == "-XX:+UseParallelGC -Xmx2g"
    assert acc.physical_memory == 16333492 * 1024
    assert acc.swap_free == 8257532 * 1024
    assert acc.context.physical_memory == acc.physical_memory


def test_normalizer_facts_carried_over():
    header = "[10.000s][info][gc,stats    ] === Garbage Collection Statistics ======================"
    acc = ingest(["Desired survivor size 1048576 bytes, new threshold 7 (max 15)", header, header])
    assert acc.preprocessed
    assert EventKind.TENURING_DISTRIBUTION in acc.event_kinds
    assert Finding.INFO_Z_STATISTICS_INTERVAL in acc.findings


def test_fold_single_event():
    acc = RunAccumulator()
    fold(acc, parse_log_line(parallel_scavenge("10.392")))
    assert acc.first_log_event.timestamp == 10392
    assert acc.prior_blocking_event is acc.blocking_events[0]
