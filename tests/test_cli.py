from typer.testing import CliRunner

from gc_diagnose.cli import __version__, app, format_kb, format_micros

runner = CliRunner()

FLAGS = "CommandLine flags: -XX:+UseParallelGC -XX:+PrintGCDetails -Xloggc:gc.log"
STOPPED = (
    "10.400: Total time for which application threads were stopped: 0.0160000 seconds, "
    "Stopping threads took: 0.0000100 seconds"
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


def write_log(tmp_path, *lines: str):
    path = tmp_path / "gc.log"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"gc-diagnose {__version__}" in result.output


def test_clean_log_exits_zero(tmp_path):
    path = write_log(tmp_path, FLAGS, parallel_scavenge("10.392"), STOPPED)
    result = runner.invoke(app, ["analyze", str(path)])
    assert result.exit_code == 0
    assert "GC Throughput" in result.output


def test_warning_exits_one(tmp_path):
    path = write_log(tmp_path, parallel_scavenge("10.392"))
    result = runner.invoke(app, ["analyze", str(path)])
    assert result.exit_code == 1
    assert "warn.application.stopped.time.missing" in result.output


def test_error_exits_two(tmp_path):
    path = write_log(tmp_path, G1_FULL_EXPLICIT)
    result = runner.invoke(app, ["analyze", str(path), "--options", "-XX:+UseG1GC"])
    assert result.exit_code == 2
    assert "error.explicit.gc.serial.g1" in result.output


def test_logging_reversed(tmp_path):
    path = write_log(tmp_path, parallel_scavenge("10.392"), parallel_scavenge("5.000"))
    result = runner.invoke(app, ["analyze", str(path)])
    assert result.exit_code == 1
    assert "Logging reversed" in result.output
    assert "--reorder" in result.output


def test_reorder_accepts_reversed_log(tmp_path):
    path = write_log(tmp_path, parallel_scavenge("10.392"), parallel_scavenge("5.000"))
    result = runner.invoke(app, ["analyze", str(path), "--reorder"])
    assert "Logging reversed" not in result.output
    assert result.exit_code == 1


def test_missing_file_is_a_usage_error(tmp_path):
    result = runner.invoke(app, ["analyze", str(tmp_path / "missing.log")])
    assert result.exit_code == 2


def test_throughput_threshold_bounds(tmp_path):
    path = write_log(tmp_path, parallel_scavenge("10.392"))
    result = runner.invoke(app, ["analyze", str(path), "--throughput-threshold", "101"])
    assert result.exit_code == 2


def test_formatters():
    assert format_micros(15129) == "0.015 secs"
    assert format_kb(512) == "512K"
    assert format_kb(2048) == "2.0M"
    assert format_kb(3 * 1024 * 1024) == "3.0G"
