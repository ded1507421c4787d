from gc_diagnose.classifier import (
    classify,
    is_datestamp_only,
    leading_timestamp,
    parse,
    parse_log_line,
    parse_release,
)
from gc_diagnose.models import (
    BlockingEvent,
    CollectorFamily,
    CommandLineFlagsEvent,
    EventKind,
    MemoryHeaderEvent,
    SafepointEvent,
    Trigger,
    UnifiedHeaderEvent,
    UnknownEvent,
    VmInfoEvent,
)

PARALLEL_SCAVENGE = (
    "10.392: [GC (Allocation Failure) [PSYoungGen: 65536K->10720K(76288K)] "
    "65536K->10728K(251392K), 0.0151290 secs] [Times: user=0.05 sys=0.01, real=0.02 secs]"
)
SERIAL_OLD = (
    "2.100: [Full GC (Allocation Failure) 2.100: [Tenured: 0K->1234K(174784K), 0.0300000 secs] "
    "5000K->1234K(253440K), [Metaspace: 2900K->2900K(1056768K)], 0.0310000 secs] "
    "[Times: user=0.03 sys=0.00, real=0.03 secs]"
)
UNIFIED_G1_YOUNG = "[0.052s][info][gc] GC(0) Pause Young (Normal) (G1 Evacuation Pause) 24M->4M(256M) 3.123ms"
STOPPED_TIME = (
    "10.400: Total time for which application threads were stopped: 0.0160000 seconds, "
    "Stopping threads took: 0.0000100 seconds"
)
UNIFIED_SAFEPOINT = (
    '[2023-08-25T02:15:57.862-0400][3.161s][info][safepoint] Safepoint "G1CollectForAllocation", '
    "Time since last: 1037449 ns, Reaching safepoint: 1052 ns, Cleanup: 2205 ns, "
    "At safepoint: 9045817 ns, Total: 9049074 ns"
)


def test_classify_parallel_scavenge():
    assert classify(PARALLEL_SCAVENGE) is EventKind.PARALLEL_SCAVENGE


def test_parse_parallel_scavenge_fields():
    event = parse_log_line(PARALLEL_SCAVENGE)
    assert isinstance(event, BlockingEvent)
    assert event.timestamp == 10392
    assert event.duration == 15129
    assert event.trigger is Trigger.ALLOCATION_FAILURE
    assert event.young.before == 65536
    assert event.combined.space == 251392
    assert event.old.space == 251392 - 76288
    assert event.times.user == 5
    assert event.parallelism == 300
    assert event.collector is CollectorFamily.PARALLEL_SCAVENGE


def test_parse_serial_old_with_metaspace():
    event = parse_log_line(SERIAL_OLD)
    assert event.kind is EventKind.SERIAL_OLD
    assert event.old.after == 1234
    assert event.perm.space == 1056768
    assert event.duration == 31000


def test_unified_pause_timestamp_is_start_of_pause():
    event = parse_log_line(UNIFIED_G1_YOUNG)
    assert event.kind is EventKind.UNIFIED_G1_YOUNG_PAUSE
    assert event.duration == 3123
    # Logged at the end of the pause
    assert event.timestamp == 52 - 3
    assert event.combined.before == 24 * 1024


def test_stopped_time():
    event = parse_log_line(STOPPED_TIME)
    assert isinstance(event, SafepointEvent)
    assert event.kind is EventKind.APPLICATION_STOPPED_TIME
    assert event.timestamp == 10400
    assert event.duration == 16000


def test_stopped_time_without_timestamp_uses_prior_line():
    line = "Total time for which application threads were stopped: 0.0005000 seconds"
    event = parse_log_line(line, PARALLEL_SCAVENGE)
    assert event.timestamp == 10392


def test_unified_safepoint_jdk17():
    event = parse_log_line(UNIFIED_SAFEPOINT)
    assert event.kind is EventKind.UNIFIED_SAFEPOINT
    assert event.operation == "G1CollectForAllocation"
    assert event.total_nanos == 9049074
    assert event.duration == 9049
    assert event.timestamp == 3161 - 9


def test_unified_start_timestamp_never_negative():
    pause = parse_log_line(
        "[0.002s][info][gc] GC(0) Pause Young (Normal) (G1 Evacuation Pause) 24M->4M(256M) 3.500ms"
    )
    assert pause.kind is EventKind.UNIFIED_G1_YOUNG_PAUSE
    assert pause.timestamp == 0
    assert pause.duration == 3500

    safepoint = parse_log_line(
        '[0.005s][info][safepoint] Safepoint "Cleanup", Time since last: 1037449 ns, '
        "Reaching safepoint: 1052 ns, Cleanup: 2205 ns, At safepoint: 9045817 ns, Total: 9049074 ns"
    )
    assert safepoint.kind is EventKind.UNIFIED_SAFEPOINT
    assert safepoint.timestamp == 0


def test_headers():
    flags = parse_log_line("CommandLine flags: -XX:+UseG1GC -Xmx2g")
    assert isinstance(flags, CommandLineFlagsEvent)
    assert flags.options == "-XX:+UseG1GC -Xmx2g"

    memory = parse_log_line(
        "Memory: 4k page, physical 16333492k(8165304k free), swap 8257532k(8257532k free)"
    )
    assert isinstance(memory, MemoryHeaderEvent)
    assert memory.physical_memory_kb == 16333492
    assert memory.swap_free_kb == 8257532


def test_vm_info_header():
    line = (
        "OpenJDK 64-Bit Server VM (25.242-b08) for linux-amd64 JRE (1.8.0_242-b08), "
        "built on Jan 28 2020 14:28:22 by \"mockbuild\" with gcc 4.8.5"
    )
    event = parse_log_line(line)
    assert isinstance(event, VmInfoEvent)
    assert event.version_major == 8
    assert event.version_minor == 242
    assert event.arch == "amd64"
    assert event.build_date.year == 2020


def test_unified_version_header():
    event = parse_log_line("[0.009s][info][gc] Version: 17.0.8+7-LTS (release)")
    assert isinstance(event, UnifiedHeaderEvent)
    assert event.is_version
    assert (event.version_major, event.version_minor) == (17, 8)


def test_parse_release():
    assert parse_release("1.8.0_242-b08") == (8, 242)
    assert parse_release("11.0.9+11") == (11, 9)
    assert parse_release("21+35") == (21, 0)
    assert parse_release("garbage") == (-1, -1)


def test_unknown_line():
    assert classify("this is not a gc line") is EventKind.UNKNOWN
    assert isinstance(parse_log_line("this is not a gc line"), UnknownEvent)


def test_throwaway_kinds():
    assert classify("") is EventKind.BLANK_LINE
    assert classify("Desired survivor size 1048576 bytes, new threshold 7 (max 15)") is (
        EventKind.TENURING_DISTRIBUTION
    )
    assert classify("{Heap before GC invocations=1 (full 0):") is EventKind.HEAP_AT_GC


def test_parse_with_kind():
    event = parse(EventKind.PARALLEL_SCAVENGE, PARALLEL_SCAVENGE)
    assert event.kind is EventKind.PARALLEL_SCAVENGE
    # Recognized but not of the requested kind
    assert parse(EventKind.SERIAL_OLD, PARALLEL_SCAVENGE).kind is EventKind.UNKNOWN


def test_datestamp_only_lines():
    assert is_datestamp_only("2023-08-25T02:15:57.862-0400: [GC pause (G1 Evacuation Pause) (young)")
    assert not is_datestamp_only(
        "2023-08-25T02:15:57.862-0400: 10.392: [GC pause (G1 Evacuation Pause) (young)"
    )
    assert leading_timestamp(PARALLEL_SCAVENGE) == 10392
    assert leading_timestamp(None) == 0


def test_classify_is_total_and_deterministic():
    for line in ("", "\x00\xff\x1b[0m binary", "[", "10.392: [GC", UNIFIED_G1_YOUNG):
        kind = classify(line)
        assert isinstance(kind, EventKind)
        assert classify(line) is kind
    assert classify("") is EventKind.BLANK_LINE
    assert classify("\x00\xff") is EventKind.UNKNOWN
