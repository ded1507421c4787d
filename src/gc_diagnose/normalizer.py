"""Multi-line merging: raw physical lines to one logical line per event.

Collectors frequently spread one event over several physical lines (detail
blocks, CPU time suffixes, tenuring output in the middle of a pause) and
concurrent threads interleave their own lines. Each family merger below knows
one family's grammar; at most one family may hold an open entry at a time.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Protocol

from pydantic import BaseModel, ConfigDict, Field

from gc_diagnose.classifier import parse_log_line, parse_release
from gc_diagnose.models import (
    EventKind,
    LogEvent,
    PreprocessEvent,
    ThrowawayEvent,
    UnifiedHeaderEvent,
    VmInfoEvent,
)
from gc_diagnose.patterns import (
    ANY_OCCUPANCY,
    DECORATOR,
    INNER_TIMESTAMP,
    LEGACY_PREFIX,
    REFERENCE_GC_BLOCK,
    SIZE_BODY,
    TIMES_UNIFIED_ANY,
    UNIFIED_LINE,
    UNIFIED_METASPACE_ANY,
)

logger = logging.getLogger(__name__)

# ============================================================
# CONTEXT TOKENS
# ============================================================

NEWLINE = "NEWLINE"
JDK17U8 = "JDK17U8"

UNIFIED_TOKEN = "UNIFIED"
PARALLEL_TOKEN = "PARALLEL"
CMS_TOKEN = "CMS"
G1_TOKEN = "G1"
SERIAL_TOKEN = "SERIAL"

FAMILY_TOKENS: frozenset[str] = frozenset(
    {UNIFIED_TOKEN, PARALLEL_TOKEN, CMS_TOKEN, G1_TOKEN, SERIAL_TOKEN}
)

_TIMES_LINE: re.Pattern[str] = re.compile(r"^\s*(?P<times>\[Times: .+\])\s*$")


class NormalizationResult(BaseModel):
    """Logical lines plus the facts recorded while merging."""

    model_config = ConfigDict(frozen=True)

    lines: list[str] = Field(default_factory=list)
    throwaway_kinds: list[EventKind] = Field(default_factory=list)
    preprocess_events: list[PreprocessEvent] = Field(default_factory=list)
    last_line_unprocessed: str | None = None
    jdk17u8: bool = False
    # A Z statistics header was seen more than once
    z_statistics_interval: bool = False


# ============================================================
# MERGE STATE
# ============================================================


class MergeState:
    """Output lines, context tokens and the entangled-line buffer of one pass."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.context: set[str] = {NEWLINE}
        self.entangled: list[str] = []
        self.throwaway_kinds: list[EventKind] = []
        self._open_index: int | None = None

    @property
    def open_token(self) -> str | None:
        for token in FAMILY_TOKENS:
            if token in self.context:
                return token
        return None

    @property
    def is_open(self) -> bool:
        return self._open_index is not None

    def start(self, text: str, token: str) -> None:
        """Begin a new logical line that later lines will extend."""
        if self.is_open:
            self.finish()
        self.lines.append(text)
        self._open_index = len(self.lines) - 1
        self.context.discard(NEWLINE)
        self.context.add(token)

    def append(self, text: str) -> None:
        if self._open_index is None:
            self.lines.append(text)
            self._open_index = len(self.lines) - 1
            self.context.discard(NEWLINE)
        else:
            self.lines[self._open_index] += text

    def finish(self, text: str = "") -> None:
        """Complete the open logical line and release any parked lines."""
        if text:
            self.append(text)
        self._open_index = None
        self.context.difference_update(FAMILY_TOKENS)
        self.context.add(NEWLINE)
        self.flush_entangled()

    def single(self, text: str) -> None:
        """Emit a complete logical line without touching the open one."""
        self.lines.append(text)

    def entangle(self, text: str) -> None:
        self.entangled.append(text)

    def discard(self, kind: EventKind) -> None:
        """Record that a line of this kind was consumed without output."""
        if kind not in self.throwaway_kinds:
            self.throwaway_kinds.append(kind)

    def flush_entangled(self) -> None:
        if self.entangled:
            self.lines.extend(self.entangled)
            self.entangled.clear()


# ============================================================
# FAMILY MERGERS
# ============================================================


class Merger(Protocol):
    """One collector family's multi-line grammar."""

    token: str | None

    def matches(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> bool:
        """True when this merger claims the line."""
        ...

    def merge(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> str | None:
        """Fold the line into the state; return leftover text to dispatch again."""
        ...


class ShenandoahMerger:
    """Drops Shenandoah progress chatter that carries no event data."""

    token: str | None = None

    NOISE_PATTERN: re.Pattern[str] = re.compile(
        rf"^(?:{DECORATOR} |{INNER_TIMESTAMP})"
        r"(?:Pause (?:Init Mark|Final Mark|Init Update Refs|Final Update Refs|Final Roots"
        r"|Final Evac|Degenerated GC)(?: \([^)]*\))*"
        r"|Concurrent [a-z][a-z ]*(?: \([^)]*\))*"
        r"|Using \d+ of \d+ workers for .+"
        r"|Pacer for .+|Free: .+|Good progress for .+|Failed to .+"
        r"|Adaptive CSet Selection\..+|Collectable Garbage: .+|Immediate Garbage: .+"
        r"|Cancelling GC: .+|Uncommitted \d+.+|Degenerated GC upgrading to Full GC)\s*$"
    )

    def matches(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> bool:
        return bool(self.NOISE_PATTERN.match(line))

    def merge(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> str | None:
        logger.debug("Dropping Shenandoah progress line: %r", line)
        return None


class UnifiedMerger:
    """Folds unified-logging pause detail (gc,start ... gc,cpu) into one line.

    The merged shape is the start marker followed by Other time, humongous
    regions, generation and metaspace sizes, the summary's heap occupancy and
    duration, and finally the CPU times.
    """

    token: str | None = UNIFIED_TOKEN

    START_PATTERN: re.Pattern[str] = re.compile(
        rf"^{DECORATOR} Pause (?P<pause>Young|Full|Remark|Cleanup|Initial Mark|Mixed)"
        r"(?: \((?:[^()]|\(\))*\))*\s*$"
    )
    SUMMARY_PATTERN: re.Pattern[str] = re.compile(
        rf"^{DECORATOR} Pause .+? (?P<tail>{ANY_OCCUPANCY} \d+[.,]\d+ ?ms)\s*$"
    )
    CPU_PATTERN: re.Pattern[str] = re.compile(rf"^{DECORATOR} (?P<times>{TIMES_UNIFIED_ANY})\s*$")
    OTHER_PATTERN: re.Pattern[str] = re.compile(
        rf"^{DECORATOR}\s+Other: (?P<other>\d+[.,]\d+) ?ms\s*$"
    )
    GENERATION_PATTERN: re.Pattern[str] = re.compile(
        rf"^{DECORATOR} (?P<name>DefNew|Tenured|PSYoungGen|ParOldGen|PSOldGen|ParNew|CMS): "
        rf"(?P<before>{SIZE_BODY})(?:\({SIZE_BODY}\))?->(?P<after>{SIZE_BODY})"
        rf"\((?P<space>{SIZE_BODY})\)"
    )
    HUMONGOUS_PATTERN: re.Pattern[str] = re.compile(
        rf"^{DECORATOR} (?P<humongous>Humongous regions: \d+->\d+)"
    )
    METASPACE_PATTERN: re.Pattern[str] = re.compile(
        rf"^{DECORATOR} (?P<metaspace>{UNIFIED_METASPACE_ANY})"
    )
    TO_SPACE_PATTERN: re.Pattern[str] = re.compile(rf"^{DECORATOR} To-space exhausted\s*$")
    # Pause detail that carries nothing the merged line keeps
    DETAIL_PATTERN: re.Pattern[str] = re.compile(
        rf"^{DECORATOR} (?:(?:Eden|Survivor|Old|Archive|Humongous) regions: \d+->\d+(?:\(\d+\))?"
        rf"|{UNIFIED_METASPACE_ANY}.*|Using \d+ workers of \d+ for .+|\s{{2,}}\S.*"
        r"|Desired survivor size \d+ bytes, new threshold \d+ \(max \d+\)"
        r"|Age table with threshold \d+ \(max \d+\)|- age\s+\d+:\s+\d+ bytes,\s+\d+ total)\s*$"
    )

    def __init__(self) -> None:
        self._pause: str | None = None
        self._gc_id: str | None = None

    def matches(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> bool:
        # Substring guard: unified lines start with a decorator
        if not line.startswith("["):
            return False
        if UNIFIED_TOKEN in state.context:
            return bool(self._decorator(line))
        if self.START_PATTERN.match(line):
            return True
        if next_line is not None and self.SUMMARY_PATTERN.match(line):
            return bool(self.CPU_PATTERN.match(next_line))
        return False

    def merge(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> str | None:
        if UNIFIED_TOKEN not in state.context:
            self._open(line, next_line, state)
            return None

        decorator = self._decorator(line)
        gc_id = decorator.group("u_gc_id") if decorator else None
        if gc_id != self._gc_id:
            if gc_id is not None and self.START_PATTERN.match(line):
                state.finish()
                self._open(line, next_line, state)
            else:
                # Another thread's line in the middle of the pause
                state.entangle(line)
            return None

        if summary := self.SUMMARY_PATTERN.match(line):
            state.append(f" {summary.group('tail')}")
            if next_line is None or not self.CPU_PATTERN.match(next_line):
                self._close(state)
        elif cpu := self.CPU_PATTERN.match(line):
            self._close(state, f" {cpu.group('times')}")
        elif other := self.OTHER_PATTERN.match(line):
            self._fold(state, f" Other: {other.group('other')}ms", ("Young", "Mixed"))
        elif humongous := self.HUMONGOUS_PATTERN.match(line):
            self._fold(state, f" {humongous.group('humongous')}", ("Young", "Mixed", "Full"))
        elif generation := self.GENERATION_PATTERN.match(line):
            self._fold(
                state,
                f" {generation.group('name')}: {generation.group('before')}->"
                f"{generation.group('after')}({generation.group('space')})",
                ("Young", "Full"),
            )
        elif metaspace := self.METASPACE_PATTERN.match(line):
            self._fold(state, f" {metaspace.group('metaspace')}", ("Young", "Full", "Mixed"))
        elif self.TO_SPACE_PATTERN.match(line):
            state.append(" To-space exhausted")
        elif self.DETAIL_PATTERN.match(line):
            state.discard(EventKind.UNIFIED_GC_DETAIL)
        else:
            # Same GC id but no known detail shape: keep it for the classifier
            state.entangle(line)
        return None

    def _fold(self, state: MergeState, text: str, pauses: tuple[str, ...]) -> None:
        if self._pause in pauses:
            state.append(text)
        else:
            state.discard(EventKind.UNIFIED_GC_DETAIL)

    def _open(self, line: str, next_line: str | None, state: MergeState) -> None:
        if start := self.START_PATTERN.match(line):
            self._pause = start.group("pause")
            self._gc_id = start.group("u_gc_id")
            state.start(line, UNIFIED_TOKEN)
        elif summary := self.SUMMARY_PATTERN.match(line):
            # Summary logged without a start marker, CPU times on the next line
            self._pause = None
            self._gc_id = summary.group("u_gc_id")
            state.start(line, UNIFIED_TOKEN)

    def _close(self, state: MergeState, text: str = "") -> None:
        self._pause = None
        self._gc_id = None
        state.finish(text)

    @staticmethod
    def _decorator(line: str) -> re.Match[str] | None:
        match = UNIFIED_LINE.match(line)
        if match and any(
            match.group(name) for name in ("u_datestamp", "u_uptime", "u_uptimemillis")
        ):
            return match
        return None


class _LegacyMerger:
    """Shared handling for legacy (JDK8 and earlier) families."""

    token: str | None = None
    # Literals identifying a complete event of this family
    EVENT_GUARDS: tuple[str, ...] = ()

    def _splits_times(self, line: str, next_line: str | None) -> bool:
        """A complete event whose [Times: ...] block landed on the next line."""
        return (
            next_line is not None
            and any(guard in line for guard in self.EVENT_GUARDS)
            and line.rstrip().endswith("]")
            and bool(_TIMES_LINE.match(next_line))
            and "[Times:" not in line
        )

    def _is_times(self, line: str, state: MergeState) -> bool:
        return self.token in state.context and bool(_TIMES_LINE.match(line))

    def _finish_times(self, line: str, state: MergeState) -> None:
        if match := _TIMES_LINE.match(line):
            state.finish(f" {match.group('times')}")


class ParallelMerger(_LegacyMerger):
    """[GC (cause) <tenuring output> [PSYoungGen: ...] heap, secs]."""

    token: str | None = PARALLEL_TOKEN
    EVENT_GUARDS = ("[PSYoungGen:",)

    START_PATTERN: re.Pattern[str] = re.compile(
        rf"^{LEGACY_PREFIX}\[(?:Full GC|GC)(?:--)?(?: \((?:[^()]|\(\))*\))?(?: --)?\s*$"
    )
    CONTINUATION_PATTERN: re.Pattern[str] = re.compile(r"^ ?(?P<body>\[PSYoungGen: .+)$")

    def matches(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> bool:
        if PARALLEL_TOKEN in state.context:
            return bool(self.CONTINUATION_PATTERN.match(line)) or self._is_times(line, state)
        return (
            next_line is not None and bool(self.START_PATTERN.match(line))
        ) or self._splits_times(line, next_line)

    def merge(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> str | None:
        if PARALLEL_TOKEN not in state.context:
            state.start(line.rstrip(), PARALLEL_TOKEN)
        elif continuation := self.CONTINUATION_PATTERN.match(line):
            state.append(f" {continuation.group('body')}")
            if next_line is None or not _TIMES_LINE.match(next_line):
                state.finish()
        else:
            self._finish_times(line, state)
        return None


class CmsMerger(_LegacyMerger):
    """ParNew split by tenuring output, and CMS collections interrupted by concurrent phases."""

    token: str | None = CMS_TOKEN
    EVENT_GUARDS = ("[ParNew:", "CMS-initial-mark", "CMS-remark", "[CMS: ", "[CMS (")

    PAR_NEW_START_PATTERN: re.Pattern[str] = re.compile(
        rf"^{LEGACY_PREFIX}\[GC(?: \((?:[^()]|\(\))*\))? {INNER_TIMESTAMP}\[ParNew\s*$"
    )
    SERIAL_OLD_START_PATTERN: re.Pattern[str] = re.compile(
        rf"^(?P<head>{LEGACY_PREFIX}\[(?:Full GC|GC).*\[CMS)"
        rf"(?P<concurrent>{INNER_TIMESTAMP}\[CMS-concurrent-[a-z-]+: "
        r"\d+[.,]\d+/\d+[.,]\d+ secs\](?: ?\[Times: [^\]]+\])?)?\s*$"
    )
    CONTINUATION_PATTERN: re.Pattern[str] = re.compile(
        rf"^(?: \((?:concurrent mode failure|concurrent mode interrupted)\))?: "
        rf"{ANY_OCCUPANCY}, .+$"
    )
    CONCURRENT_PATTERN: re.Pattern[str] = re.compile(
        rf"^{INNER_TIMESTAMP}\[CMS-concurrent-.+$"
    )

    def matches(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> bool:
        if CMS_TOKEN in state.context:
            return (
                bool(self.CONTINUATION_PATTERN.match(line))
                or bool(self.CONCURRENT_PATTERN.match(line))
                or self._is_times(line, state)
            )
        # Substring guard: only run regex if a CMS fragment is present
        if "[ParNew" not in line and "[CMS" not in line:
            return False
        if self.PAR_NEW_START_PATTERN.match(line):
            return True
        if "[CMS" in line and self.SERIAL_OLD_START_PATTERN.match(line):
            return next_line is not None
        return self._splits_times(line, next_line)

    def merge(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> str | None:
        if CMS_TOKEN not in state.context:
            if not self.PAR_NEW_START_PATTERN.match(line) and (
                start := self.SERIAL_OLD_START_PATTERN.match(line)
            ):
                state.start(start.group("head"), CMS_TOKEN)
                if start.group("concurrent"):
                    state.entangle(start.group("concurrent"))
            else:
                state.start(line.rstrip(), CMS_TOKEN)
        elif self.CONTINUATION_PATTERN.match(line):
            state.append(line.rstrip())
            if next_line is None or not _TIMES_LINE.match(next_line):
                state.finish()
        elif self.CONCURRENT_PATTERN.match(line):
            state.entangle(line)
        else:
            self._finish_times(line, state)
        return None


class G1Merger(_LegacyMerger):
    """Legacy G1 pauses with -XX:+PrintGCDetails detail blocks.

    Keeps the Ext Root Scanning, Other, and Eden/Heap blocks and the CPU
    times; the rest of the detail block is dropped.
    """

    token: str | None = G1_TOKEN
    EVENT_GUARDS = ("[GC pause", "[GC remark", "[GC cleanup", "[Full GC")

    START_PATTERN: re.Pattern[str] = re.compile(
        rf"^{LEGACY_PREFIX}\[(?:GC pause|GC remark|GC cleanup|Full GC).*\]\s*$"
    )
    DETAIL_START_PATTERN: re.Pattern[str] = re.compile(r"^\s+\[")
    EXT_ROOT_PATTERN: re.Pattern[str] = re.compile(
        r"^\s+(?P<block>\[Ext Root Scanning \(ms\):.*\])\s*$"
    )
    OTHER_PATTERN: re.Pattern[str] = re.compile(r"^ {3}(?P<block>\[Other: \d+[.,]\d+ ms\])\s*$")
    EDEN_PATTERN: re.Pattern[str] = re.compile(r"^\s+(?P<block>\[Eden: .+\])\s*$")
    CONCURRENT_PATTERN: re.Pattern[str] = re.compile(rf"^{LEGACY_PREFIX}\[GC concurrent-.+$")

    def matches(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> bool:
        if G1_TOKEN in state.context:
            return (
                bool(self.DETAIL_START_PATTERN.match(line))
                or bool(_TIMES_LINE.match(line))
                or bool(self.CONCURRENT_PATTERN.match(line))
            )
        # Substring guard: only run regex if a G1 pause literal is present
        if not any(guard in line for guard in self.EVENT_GUARDS):
            return False
        return (
            next_line is not None
            and bool(self.START_PATTERN.match(line))
            and "[Times:" not in line
            and (
                bool(self.DETAIL_START_PATTERN.match(next_line))
                or bool(_TIMES_LINE.match(next_line))
            )
        )

    def merge(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> str | None:
        if G1_TOKEN not in state.context:
            state.start(line.rstrip(), G1_TOKEN)
            return None
        if times := _TIMES_LINE.match(line):
            state.finish(f" {times.group('times')}")
        elif ext_root := self.EXT_ROOT_PATTERN.match(line):
            state.append(ext_root.group("block"))
        elif other := self.OTHER_PATTERN.match(line):
            state.append(other.group("block"))
        elif self.EDEN_PATTERN.match(line):
            state.append(line.strip())
            if next_line is None or not _TIMES_LINE.match(next_line):
                state.finish()
        elif self.CONCURRENT_PATTERN.match(line):
            state.entangle(line)
        else:
            state.discard(EventKind.G1_DETAIL)
        return None


class SerialMerger(_LegacyMerger):
    """[GC (cause) [DefNew <tenuring output> : young, secs] heap, secs]."""

    token: str | None = SERIAL_TOKEN
    EVENT_GUARDS = ("[DefNew:", "[Tenured:")

    START_PATTERN: re.Pattern[str] = re.compile(
        rf"^{LEGACY_PREFIX}\[GC(?: \((?:[^()]|\(\))*\))? {INNER_TIMESTAMP}\[DefNew\s*$"
    )
    CONTINUATION_PATTERN: re.Pattern[str] = re.compile(rf"^: {ANY_OCCUPANCY}, .+$")

    def matches(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> bool:
        if SERIAL_TOKEN in state.context:
            return bool(self.CONTINUATION_PATTERN.match(line)) or self._is_times(line, state)
        # Substring guard: only run regex if "[DefNew" or "[Tenured" present
        if "[DefNew" not in line and "[Tenured" not in line:
            return False
        return bool(self.START_PATTERN.match(line)) or self._splits_times(line, next_line)

    def merge(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> str | None:
        if SERIAL_TOKEN not in state.context:
            state.start(line.rstrip(), SERIAL_TOKEN)
        elif self.CONTINUATION_PATTERN.match(line):
            state.append(line.rstrip())
            if next_line is None or not _TIMES_LINE.match(next_line):
                state.finish()
        else:
            self._finish_times(line, state)
        return None


class ApplicationStoppedTimeMerger:
    """Splits stopped-time output written into the middle of another line."""

    token: str | None = None

    EMBEDDED_PATTERN: re.Pattern[str] = re.compile(
        rf"^(?P<head>.*?[^\d\s:.,])(?P<stopped>{INNER_TIMESTAMP}Total time for which application "
        r"threads were stopped: \d+[.,]\d+ seconds(?:, Stopping threads took: \d+[.,]\d+ "
        r"seconds)?)\s*$"
    )
    STANDALONE_PATTERN: re.Pattern[str] = re.compile(
        rf"^(?:{INNER_TIMESTAMP}|(?:\[[^\]]+\])+ )Total time for which application threads were "
        r"stopped: .+$"
    )

    def matches(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> bool:
        # Substring guard: only run regex if the stopped-time literal is present
        if "Total time for which application threads were stopped" not in line:
            return False
        if self.EMBEDDED_PATTERN.match(line):
            return True
        return state.is_open and bool(self.STANDALONE_PATTERN.match(line))

    def merge(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> str | None:
        if embedded := self.EMBEDDED_PATTERN.match(line):
            state.single(embedded.group("stopped"))
            return embedded.group("head")
        state.entangle(line)
        return None


# ============================================================
# NORMALIZER
# ============================================================


class Normalizer:
    """Turns raw physical lines into logical lines, one pass per instance call."""

    # Dispatch order is significant: the first merger that claims a line wins
    def __init__(self) -> None:
        self._mergers: list[Merger] = [
            ShenandoahMerger(),
            UnifiedMerger(),
            ParallelMerger(),
            CmsMerger(),
            G1Merger(),
            SerialMerger(),
            ApplicationStoppedTimeMerger(),
        ]
        self._preprocess_events: list[PreprocessEvent] = []
        self._z_statistics_interval = False
        # Unknown until the first version header
        self._jdk17u8: bool | None = None

    def normalize(self, raw_lines: Iterable[str]) -> NormalizationResult:
        """Merge and filter one log in a single pass.

        Lines are consumed one at a time with one line of lookahead, so an
        open file can be passed directly.

        Args:
            raw_lines: Physical log lines in file order

        Returns:
            The logical lines and the facts recorded along the way
        """
        state = MergeState()
        self._preprocess_events = []
        self._z_statistics_interval = False
        self._jdk17u8 = None

        count = 0
        prior_line: str | None = None
        line: str | None = None
        for next_line in (raw.rstrip() for raw in raw_lines):
            if line is not None:
                self._dispatch(line, prior_line, next_line, state)
                prior_line = line
            line = next_line
            count += 1

        if line is None:
            return NormalizationResult()
        self._dispatch(line, prior_line, None, state)

        # A merge still open at end of input is emitted as is
        state.finish()

        logger.info("Normalized %d physical lines into %d logical lines", count, len(state.lines))
        return NormalizationResult(
            lines=state.lines,
            throwaway_kinds=state.throwaway_kinds,
            preprocess_events=self._preprocess_events,
            last_line_unprocessed=line,
            jdk17u8=bool(self._jdk17u8),
            z_statistics_interval=self._z_statistics_interval,
        )

    def _dispatch(
        self, line: str, prior_line: str | None, next_line: str | None, state: MergeState
    ) -> None:
        event = parse_log_line(line, prior_line)
        if self._jdk17u8 is None:
            self._jdk17u8 = _names_jdk17u8(event)
            if self._jdk17u8:
                state.context.add(JDK17U8)
        if isinstance(event, ThrowawayEvent):
            self._record_throwaway(event, state)
            return

        # Substring guard: only run regex if a reference block may be present
        if "Reference, " in line and REFERENCE_GC_BLOCK.search(line):
            line = REFERENCE_GC_BLOCK.sub("", line)
            if PreprocessEvent.REFERENCE_GC not in self._preprocess_events:
                self._preprocess_events.append(PreprocessEvent.REFERENCE_GC)

        open_token = state.open_token
        for merger in self._mergers:
            if merger.token is not None and open_token not in (None, merger.token):
                continue
            if merger.matches(line, prior_line, next_line, state):
                leftover = merger.merge(line, prior_line, next_line, state)
                if leftover:
                    self._dispatch(leftover, prior_line, next_line, state)
                return

        if state.is_open:
            logger.debug("Line breaks the open %s merge: %r", open_token, line)
            state.finish()
        state.flush_entangled()
        state.single(line)
        state.context.add(NEWLINE)

    def _record_throwaway(self, event: ThrowawayEvent, state: MergeState) -> None:
        if event.kind not in state.throwaway_kinds:
            state.discard(event.kind)
        elif event.kind is EventKind.Z_STATS and event.header:
            self._z_statistics_interval = True


def _names_jdk17u8(event: LogEvent) -> bool | None:
    """Whether a version header names JDK 17.0.8+ or 21+; None for any other line."""
    if isinstance(event, VmInfoEvent):
        major, minor = event.version_major, event.version_minor
    elif isinstance(event, UnifiedHeaderEvent) and event.is_version:
        major, minor = parse_release(event.release_string or "")
    else:
        return None
    return (major == 17 and minor >= 8) or major >= 21


def normalize(raw_lines: Iterable[str]) -> NormalizationResult:
    """Normalize one log with a fresh Normalizer."""
    return Normalizer().normalize(raw_lines)
