"""JVM options collaborator.

Parses the command-line options text (from the log's flags header or supplied
by the caller) into typed facts, and runs its own option rules into a finding
list that the core analysis may add to and prune.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from pydantic import BaseModel, Field

from gc_diagnose.models import CollectorFamily, FindingList, OptionFinding
from gc_diagnose.units import option_size_to_bytes

logger = logging.getLogger(__name__)


class JvmContext(BaseModel):
    """Runtime facts gathered from the log as it is read."""

    options: str | None = None
    version_major: int = -1
    version_minor: int = -1
    collectors: list[CollectorFamily] = Field(default_factory=list)
    physical_memory: int = 0
    is_32_bit: bool = False
    arch: str | None = None
    build_date: datetime | None = None
    release_string: str | None = None

    def add_collector(self, collector: CollectorFamily) -> None:
        if collector not in self.collectors:
            self.collectors.append(collector)


# ============================================================
# OPTION HELPERS
# ============================================================


def is_option_disabled(option: str | None) -> bool:
    """True only for an explicit -XX:-Flag."""
    return option is not None and option.startswith("-XX:-")


def is_option_enabled(option: str | None) -> bool:
    return option is not None and option.startswith("-XX:+")


def option_value(option: str | None) -> str | None:
    """Value part of a sized option: -Xmx2g -> 2g, -XX:MaxPermSize=256m -> 256m."""
    if option is None:
        return None
    if "=" in option:
        return option.split("=", 1)[1]
    if match := _X_SIZE_OPTION.match(option):
        return match.group("value")
    return None


def option_bytes(option: str | None) -> int:
    """Size option in bytes, 0 when unset or unparseable."""
    value = option_value(option)
    if value is None:
        return 0
    try:
        return option_size_to_bytes(value)
    except ValueError:
        logger.debug("Unparseable size option: %s", option)
        return 0


def _xlog_to_file(xlog: str) -> bool:
    """-Xlog:<selectors>:<output>:... writes to a file unless output is stdout/stderr."""
    parts = xlog.split(":")
    if len(parts) < 3:
        return False
    output = parts[2].removeprefix("file=")
    return bool(output) and output not in ("stdout", "stderr")


_OPTION_TOKEN: re.Pattern[str] = re.compile(r"(?:^|\s)(?P<option>-\S+)")
_XX_FLAG: re.Pattern[str] = re.compile(r"^-XX:[+-](?P<name>\w+)$")
_XX_VALUE: re.Pattern[str] = re.compile(r"^-XX:(?P<name>\w+)=(?P<value>.*)$")
_X_SIZE_OPTION: re.Pattern[str] = re.compile(r"^-X(?P<name>ms|mx|mn|ss)(?P<value>\d+[bBkKmMgGtT]?)$")


class JvmOptions:
    """Typed view over JVM options text plus its own finding list."""

    def __init__(self, context: JvmContext) -> None:
        self.context = context
        self.findings = FindingList()
        self._options: dict[str, str] = {}
        self._xlog: list[str] = []
        self._tokens: list[str] = []
        if context.options:
            self._parse(context.options)

    def _parse(self, text: str) -> None:
        for match in _OPTION_TOKEN.finditer(text):
            option = match.group("option")
            self._tokens.append(option)
            if flag := _XX_FLAG.match(option):
                self._options[flag.group("name")] = option
            elif value := _XX_VALUE.match(option):
                self._options[value.group("name")] = option
            elif size := _X_SIZE_OPTION.match(option):
                self._options[f"X{size.group('name')}"] = option
            elif option.startswith("-Xlog:") or option == "-Xlog":
                self._xlog.append(option)
            elif option.startswith("-Xloggc:"):
                self._options["Xloggc"] = option
            elif option.startswith("-verbose:gc"):
                self._options["verbose:gc"] = option
            else:
                self._options[option.lstrip("-")] = option
        logger.debug("Parsed %d JVM options", len(self._tokens))

    def get(self, name: str) -> str | None:
        """The option token for `name` (e.g. PrintGCCause), or None when unset."""
        return self._options.get(name)

    @property
    def has_options(self) -> bool:
        return bool(self._tokens)

    # --- sizes ---

    @property
    def max_heap_size(self) -> str | None:
        return self.get("Xmx") or self.get("MaxHeapSize")

    @property
    def perm_size(self) -> str | None:
        return self.get("PermSize")

    @property
    def max_perm_size(self) -> str | None:
        return self.get("MaxPermSize")

    @property
    def max_metaspace_size(self) -> str | None:
        return self.get("MaxMetaspaceSize")

    @property
    def compressed_class_space_size(self) -> str | None:
        return self.get("CompressedClassSpaceSize")

    # --- toggles ---

    @property
    def use_compressed_oops(self) -> str | None:
        return self.get("UseCompressedOops")

    @property
    def use_compressed_class_pointers(self) -> str | None:
        return self.get("UseCompressedClassPointers")

    @property
    def print_command_line_flags(self) -> str | None:
        return self.get("PrintCommandLineFlags")

    @property
    def print_gc_cause(self) -> str | None:
        return self.get("PrintGCCause")

    @property
    def print_gc_details(self) -> str | None:
        return self.get("PrintGCDetails")

    @property
    def xlog(self) -> list[str]:
        return list(self._xlog)

    # --- findings ---

    def add(self, finding: OptionFinding) -> None:
        self.findings.add(finding)

    def remove(self, finding: OptionFinding) -> None:
        self.findings.remove(finding)

    def has(self, finding: OptionFinding) -> bool:
        return finding in self.findings

    @property
    def collectors(self) -> set[CollectorFamily]:
        """Collectors seen in the log plus those the options select."""
        collectors = set(self.context.collectors)
        if is_option_enabled(self.get("UseG1GC")):
            collectors.add(CollectorFamily.G1)
        if is_option_enabled(self.get("UseConcMarkSweepGC")):
            collectors.add(CollectorFamily.CMS)
        if is_option_enabled(self.get("UseSerialGC")):
            collectors.add(CollectorFamily.SERIAL_OLD)
        return collectors

    def do_analysis(self) -> None:
        """Run the option rules. Without options text there is nothing to check."""
        if not self.has_options:
            return

        collectors = self.collectors
        cms = CollectorFamily.CMS in collectors

        if is_option_enabled(self.get("UseSerialGC")):
            self.add(OptionFinding.INFO_GC_SERIAL_ELECTED)

        if cms and is_option_disabled(self.get("CMSClassUnloadingEnabled")):
            self.add(OptionFinding.WARN_CMS_CLASS_UNLOADING_DISABLED)

        if (
            (cms or CollectorFamily.G1 in collectors)
            and not is_option_enabled(self.get("DisableExplicitGC"))
            and not is_option_enabled(self.get("ExplicitGCInvokesConcurrent"))
            and not is_option_enabled(self.get("ExplicitGCInvokesConcurrentAndUnloadsClasses"))
        ):
            self.add(OptionFinding.WARN_EXPLICIT_GC_NOT_CONCURRENT)

        if is_option_disabled(self.print_gc_details):
            self.add(OptionFinding.WARN_JDK8_PRINT_GC_DETAILS_DISABLED)
        elif (
            self.print_gc_details is None
            and not self._xlog
            and (self.get("verbose:gc") is not None or is_option_enabled(self.get("PrintGC")))
        ):
            self.add(OptionFinding.WARN_JDK8_PRINT_GC_DETAILS_MISSING)

        enabled_rules = (
            ("PrintGCApplicationConcurrentTime", OptionFinding.INFO_PRINT_GC_APPLICATION_CONCURRENT_TIME),
            ("TraceClassUnloading", OptionFinding.INFO_TRACE_CLASS_UNLOADING),
            ("PrintReferenceGC", OptionFinding.INFO_JDK8_PRINT_REFERENCE_GC_ENABLED),
            ("PrintTenuringDistribution", OptionFinding.INFO_JDK8_PRINT_TENURING_DISTRIBUTION),
            ("PrintClassHistogram", OptionFinding.WARN_CLASS_HISTOGRAM),
            ("PrintClassHistogramBeforeFullGC", OptionFinding.WARN_CLASS_HISTOGRAM_BEFORE_FULL_GC),
            ("PrintClassHistogramAfterFullGC", OptionFinding.WARN_CLASS_HISTOGRAM_AFTER_FULL_GC),
            ("PrintHeapAtGC", OptionFinding.INFO_JDK8_PRINT_HEAP_AT_GC),
            ("CMSIncrementalMode", OptionFinding.INFO_CMS_INCREMENTAL_MODE),
        )
        for name, finding in enabled_rules:
            if is_option_enabled(self.get(name)):
                self.add(finding)

        fls = option_value(self.get("PrintFLSStatistics"))
        if fls is not None and fls.isdigit() and int(fls) > 0:
            self.add(OptionFinding.INFO_JDK8_PRINT_FLS_STATISTICS)

        if self.get("Xloggc") is None and not any(_xlog_to_file(xlog) for xlog in self._xlog):
            self.add(OptionFinding.INFO_GC_LOG_STDOUT)

        if cms and is_option_disabled(self.get("UseParNewGC")):
            self.add(OptionFinding.ERROR_JDK8_CMS_PAR_NEW_DISABLED)

        logger.debug("Option findings: %s", self.findings.keys())
