from gc_diagnose.classifier import parse_log_line
from gc_diagnose.models import EventKind, PreprocessEvent
from gc_diagnose.normalizer import Normalizer, normalize

PARALLEL_SCAVENGE = (
    "10.392: [GC (Allocation Failure) [PSYoungGen: 65536K->10720K(76288K)] "
    "65536K->10728K(251392K), 0.0151290 secs] [Times: user=0.05 sys=0.01, real=0.02 secs]"
)


def test_plain_lines_pass_through():
    result = normalize([PARALLEL_SCAVENGE, "not a gc line"])
    assert result.lines == [PARALLEL_SCAVENGE, "not a gc line"]
    assert result.last_line_unprocessed == "not a gc line"


def test_empty_input():
    result = normalize([])
    assert result.lines == []
    assert result.last_line_unprocessed is None


def test_par_new_split_by_tenuring_distribution():
    raw = [
        "10.000: [GC (Allocation Failure) 10.000: [ParNew",
        "Desired survivor size 1048576 bytes, new threshold 7 (max 15)",
        "- age   1:     123456 bytes,     123456 total",
        ": 19136K->2112K(19136K), 0.0170000 secs] 40000K->25000K(83008K), 0.0171000 secs] "
        "[Times: user=0.05 sys=0.00, real=0.02 secs]",
    ]
    result = normalize(raw)
    assert len(result.lines) == 1
    assert EventKind.TENURING_DISTRIBUTION in result.throwaway_kinds

    event = parse_log_line(result.lines[0])
    assert event.kind is EventKind.PAR_NEW
    assert event.young.before == 19136
    assert event.duration == 17100


def test_unified_g1_pause_detail_merged():
    raw = [
        "[0.101s][info][gc,start     ] GC(3) Pause Young (Normal) (G1 Evacuation Pause)",
        "[0.101s][info][gc,task      ] GC(3) Using 2 workers of 4 for evacuation",
        "[0.105s][info][gc,phases    ] GC(3)   Other: 0.1ms",
        "[0.105s][info][gc,heap      ] GC(3) Eden regions: 1->0(1)",
        "[0.105s][debug][gc,age       ] GC(3) Desired survivor size 1048576 bytes, new threshold 15 (max 15)",
        "[0.105s][info][gc,metaspace ] GC(3) Metaspace: 1000K->1000K(1056768K)",
        "[0.105s][info][gc           ] GC(3) Pause Young (Normal) (G1 Evacuation Pause) 2M->1M(8M) 3.500ms",
        "[0.105s][info][gc,cpu       ] GC(3) User=0.01s Sys=0.00s Real=0.00s",
    ]
    result = normalize(raw)
    assert len(result.lines) == 1
    merged = result.lines[0]
    assert " Other: 0.1ms" in merged
    assert merged.endswith("2M->1M(8M) 3.500ms User=0.01s Sys=0.00s Real=0.00s")

    event = parse_log_line(merged)
    assert event.kind is EventKind.UNIFIED_G1_YOUNG_PAUSE
    # Stamped at the start marker; Other time counts toward the pause
    assert event.timestamp == 101
    assert event.duration == 3600
    assert event.perm.space == 1056768
    assert EventKind.UNIFIED_GC_DETAIL in result.throwaway_kinds


def test_unrecognized_unified_detail_follows_the_pause():
    unknown = "[0.103s][info][gc,ergo    ] GC(3) Some future detail nobody recognises"
    raw = [
        "[0.101s][info][gc,start     ] GC(3) Pause Young (Normal) (G1 Evacuation Pause)",
        unknown,
        "[0.105s][info][gc           ] GC(3) Pause Young (Normal) (G1 Evacuation Pause) 24M->4M(256M) 3.500ms",
        "[0.105s][info][gc,cpu       ] GC(3) User=0.01s Sys=0.00s Real=0.00s",
    ]
    result = normalize(raw)
    assert len(result.lines) == 2
    assert result.lines[0].endswith("24M->4M(256M) 3.500ms User=0.01s Sys=0.00s Real=0.00s")
    assert result.lines[1] == unknown


def test_orphan_unified_detail_passes_through():
    orphan = "[0.101s][info][gc,heap     ] GC(3) Eden regions: 5->0(10)"
    result = normalize([orphan])
    assert result.lines == [orphan]
    assert result.throwaway_kinds == []


def test_legacy_g1_young_pause_split_over_three_lines():
    raw = [
        "2.000: [GC pause (G1 Evacuation Pause) (young), 0.0100000 secs]",
        "   [Parallel Time: 9.5 ms, GC Workers: 4]",
        "   [Other: 0.5 ms]",
        "   [Eden: 1024K(3072K)->0B(3072K) Survivors: 0B->1024K Heap: 3060K(10M)->2850K(10M)]",
        " [Times: user=0.02 sys=0.00, real=0.01 secs]",
    ]
    result = normalize(raw)
    assert len(result.lines) == 1
    assert EventKind.G1_DETAIL in result.throwaway_kinds

    event = parse_log_line(result.lines[0])
    assert event.kind is EventKind.G1_YOUNG_PAUSE
    assert event.timestamp == 2000
    assert event.duration == 10000
    assert event.other_time == 500
    assert event.combined.after == 2850
    assert event.times.user == 2


def test_unified_g1_young_pause_over_three_lines():
    raw = [
        "[15.086s][info][gc,start    ] GC(1) Pause Young (Normal) (G1 Evacuation Pause)",
        "[15.089s][info][gc          ] GC(1) Pause Young (Normal) (G1 Evacuation Pause) 24M->4M(256M) 3.000ms",
        "[15.089s][info][gc,cpu      ] GC(1) User=0.01s Sys=0.00s Real=0.00s",
    ]
    result = normalize(raw)
    assert len(result.lines) == 1

    event = parse_log_line(result.lines[0])
    assert event.kind is EventKind.UNIFIED_G1_YOUNG_PAUSE
    assert event.timestamp == 15086
    assert event.duration == 3000

    with_other = normalize(raw[:1] + ["[15.089s][info][gc,phases   ] GC(1)   Other: 0.4ms"] + raw[1:])
    assert len(with_other.lines) == 1
    assert parse_log_line(with_other.lines[0]).duration == 3400


def test_reference_gc_block_stripped():
    raw = [
        "10.392: [GC (Allocation Failure) 10.400: [SoftReference, 0 refs, 0.0000100 secs]"
        "10.400: [WeakReference, 5 refs, 0.0000200 secs]10.400: [FinalReference, 3 refs, "
        "0.0000300 secs]10.400: [PhantomReference, 0 refs, 0 refs, 0.0000400 secs]10.400: "
        "[JNI Weak Reference, 0.0000050 secs][PSYoungGen: 65536K->10720K(76288K)] "
        "65536K->10728K(251392K), 0.0151290 secs] [Times: user=0.05 sys=0.01, real=0.02 secs]"
    ]
    result = normalize(raw)
    assert result.lines == [PARALLEL_SCAVENGE]
    assert result.preprocess_events == [PreprocessEvent.REFERENCE_GC]


def test_embedded_stopped_time_split_out():
    stopped = "10.410: Total time for which application threads were stopped: 0.0160000 seconds"
    result = normalize([PARALLEL_SCAVENGE + stopped])
    assert sorted(result.lines) == sorted([PARALLEL_SCAVENGE, stopped])


def test_times_block_on_next_line():
    head = (
        "10.392: [GC (Allocation Failure) [PSYoungGen: 65536K->10720K(76288K)] "
        "65536K->10728K(251392K), 0.0151290 secs]"
    )
    result = normalize([head, " [Times: user=0.05 sys=0.01, real=0.02 secs]"])
    assert result.lines == [PARALLEL_SCAVENGE]


def test_reads_open_file(tmp_path):
    path = tmp_path / "gc.log"
    path.write_text(
        "10.392: [GC (Allocation Failure) [PSYoungGen: 65536K->10720K(76288K)] "
        "65536K->10728K(251392K), 0.0151290 secs]\n"
        " [Times: user=0.05 sys=0.01, real=0.02 secs]\n",
        encoding="utf-8",
    )
    with path.open(encoding="utf-8") as f:
        result = normalize(f)
    assert result.lines == [PARALLEL_SCAVENGE]
    assert result.last_line_unprocessed == " [Times: user=0.05 sys=0.01, real=0.02 secs]"


def test_jdk17u8_context_token():
    assert normalize(["[0.009s][info][gc] Version: 17.0.8+7-LTS (release)"]).jdk17u8
    assert not normalize(["[0.009s][info][gc] Version: 17.0.2+8-LTS (release)"]).jdk17u8
    assert normalize(["[0.009s][info][gc] Version: 21.0.1+12-LTS (release)"]).jdk17u8
    # The first version header decides
    assert not normalize(
        [
            "[0.009s][info][gc] Version: 17.0.2+8-LTS (release)",
            "[0.009s][info][gc] Version: 17.0.8+7-LTS (release)",
        ]
    ).jdk17u8


def test_repeated_z_statistics_header():
    header = "[10.000s][info][gc,stats    ] === Garbage Collection Statistics ======================"
    result = normalize([header, header])
    assert result.lines == []
    assert result.throwaway_kinds == [EventKind.Z_STATS]
    assert result.z_statistics_interval


def test_normalizer_instance_is_reusable():
    normalizer = Normalizer()
    first = normalizer.normalize(["Desired survivor size 1048576 bytes, new threshold 7 (max 15)"])
    second = normalizer.normalize([PARALLEL_SCAVENGE])
    assert first.throwaway_kinds == [EventKind.TENURING_DISTRIBUTION]
    assert second.throwaway_kinds == []
