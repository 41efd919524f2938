"""Log line classification.

A fixed, ordered rule table maps text to (subsystem, severity). The first
matching rule wins, so severe and specific rules sit above generic ones.
Lines from the kernel ring buffer also carry a numeric level, used only
when no rule matches.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass

from cyber_watchdog.models import Severity


@dataclass(frozen=True)
class ClassificationRule:
    """A pattern and the (subsystem, severity) it yields.

    A rule matches when every keyword group has at least one keyword in the
    line, or when ``pattern`` matches. Matching is case-insensitive.
    """

    subsystem: str
    severity: Severity
    keyword_groups: tuple[tuple[str, ...], ...] = ()
    pattern: re.Pattern | None = None

    def matches(self, lowered: str) -> bool:
        """Test an already-lowercased line."""
        if self.keyword_groups and all(
            any(k in lowered for k in group) for group in self.keyword_groups
        ):
            return True
        return self.pattern is not None and self.pattern.search(lowered) is not None


@dataclass(frozen=True)
class Classification:
    subsystem: str
    severity: Severity


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        "GPU",
        Severity.CRITICAL,
        keyword_groups=(
            ("gpu", "drm", "nvidia", "amdgpu", "radeon", "i915", "nouveau"),
            ("error", "fail", "hang", "timeout", "fault"),
        ),
    ),
    ClassificationRule("Kernel", Severity.EMERGENCY, pattern=re.compile(r"kernel\s+panic")),
    ClassificationRule(
        "Kernel",
        Severity.CRITICAL,
        keyword_groups=(("bug:", "rip:", "call trace:", "oops:", "general protection"),),
        # WARN() splat header, not any line containing "warning:"
        pattern=re.compile(r"\bwarning: (?:cpu: \d+ pid: \d+|at \S+)"),
    ),
    ClassificationRule(
        "Memory",
        Severity.CRITICAL,
        keyword_groups=(("out of memory", "oom-kill", "oom_reaper"),),
    ),
    ClassificationRule(
        "Kernel",
        Severity.CRITICAL,
        keyword_groups=(("soft lockup", "hard lockup"),),
    ),
    ClassificationRule(
        "Storage",
        Severity.CRITICAL,
        keyword_groups=(
            ("sd", "nvme", "ata", "i/o error", "ext4-fs", "btrfs", "xfs"),
            ("error", "fail", "timeout"),
        ),
    ),
    ClassificationRule(
        "USB",
        Severity.ERROR,
        keyword_groups=(("usb",), ("error", "fail", "disconnect", "reset")),
    ),
    ClassificationRule(
        "Network",
        Severity.ERROR,
        keyword_groups=(
            ("eth", "wlan", "enp", "ens", "wlp", "iwlwifi", "ath"),
            ("error", "fail", "timeout", "reset", "link down"),
        ),
    ),
    ClassificationRule(
        "Thermal",
        Severity.CRITICAL,
        keyword_groups=(("thermal",), ("critical", "emergency")),
    ),
)


def fallback_for_level(level: int) -> Classification:
    """Map a ring-buffer syslog level (0 = most severe) to a classification."""
    if level <= 2:
        return Classification("Kernel", Severity.CRITICAL)
    if level == 3:
        return Classification("Kernel", Severity.ERROR)
    if level == 4:
        return Classification("Kernel", Severity.WARNING)
    return Classification("Kernel", Severity.INFO)


class LogClassifier:
    """Ordered first-match classifier.

    The rule tuple is fixed at construction and never mutated, so one
    instance can be shared across threads.
    """

    def __init__(self, rules: Sequence[ClassificationRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def classify(self, line: str, source_level: int | None = None) -> Classification | None:
        """Classify a line.

        Args:
            line: Raw log text.
            source_level: Ring-buffer level, or None for command sources.

        Returns:
            The first matching rule's classification; the level fallback
            when nothing matches and a level is given; otherwise None.
        """
        lowered = line.lower()
        for rule in self.rules:
            if rule.matches(lowered):
                return Classification(rule.subsystem, rule.severity)
        if source_level is not None:
            return fallback_for_level(source_level)
        return None
