"""Content scanner for skill markdown.

Evaluates the pattern catalogue in scanner_patterns.yaml against skill
content line by line and produces a deterministic ScanReport.

Algorithmic-complexity hardening:
- Content is capped at `max_scan_bytes`; beyond the cap only the prefix is
  scanned and the report is marked truncated.
- Every line is truncated to `max_line_length` before any pattern runs.
- Patterns never span lines.
- The catalogue loader rejects unbounded `+`/`*` quantifiers, so every
  pattern has bounded repetition.

A category whose rules fail validation is disabled (fail-open for that
category) and listed in `degraded_categories` on every report. Any confirmed
high or critical finding still fails the report.
"""

import hashlib
import re
from collections import defaultdict
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from skill_trust_engine.core.types import Finding, FindingSeverity, FindingType, ScanReport
from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)

_CATALOGUE_PATH = Path(__file__).parent / "scanner_patterns.yaml"

_LINE_BREAK = re.compile(r"\r\n|\r|\n")

# U+200B..U+200D, U+2060, U+FEFF and NUL
_INVISIBLE_CHARS = dict.fromkeys(map(ord, "\u200b\u200c\u200d\u2060\ufeff\x00"))

_SNIPPET_LENGTH = 120

SEVERITY_WEIGHTS: dict[FindingSeverity, int] = {
    FindingSeverity.CRITICAL: 30,
    FindingSeverity.HIGH: 20,
    FindingSeverity.MEDIUM: 10,
    FindingSeverity.LOW: 3,
}
_FULL_WEIGHT_CRITICALS = 3
_EXTRA_CRITICAL_WEIGHT = 5
_NON_CRITICAL_TYPE_CAP = 30
_MAX_RISK_SCORE = 100


class PatternCatalogueError(Exception):
    """Raised when the pattern catalogue file cannot be loaded at all."""


@dataclass(frozen=True)
class PatternRule:
    """One compiled catalogue rule.

    Attributes:
        rule_id: Stable identifier reported on findings.
        category: Finding type this rule reports.
        severity: Severity of a match.
        regex: Compiled, case-insensitive pattern.
        host_group: Capture group holding a URL host. None for ordinary rules.
        blocked_hosts: When set, only URLs on these hosts are reported.
            Otherwise URLs on the catalogue allow-list are ignored.
    """

    rule_id: str
    category: FindingType
    severity: FindingSeverity
    regex: re.Pattern[str]
    host_group: int | None = None
    blocked_hosts: frozenset[str] = frozenset()


@dataclass(frozen=True)
class PatternCatalogue:
    rules: tuple[PatternRule, ...]
    allowed_hosts: frozenset[str]
    degraded_categories: tuple[str, ...] = ()


def has_unbounded_quantifier(pattern: str) -> bool:
    """Return True when the pattern uses `+`, `*`, or `{n,}` outside a character class.

    Args:
        pattern: Regular expression source.

    Returns:
        True if the pattern contains unbounded repetition.
    """
    in_class = False
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "\\":
            i += 2
            continue
        if in_class:
            if char == "]":
                in_class = False
        elif char == "[":
            in_class = True
            # A leading ] (or ^]) is a literal inside the class
            if pattern[i + 1 : i + 2] == "]":
                i += 1
            elif pattern[i + 1 : i + 3] == "^]":
                i += 2
        elif char in "+*":
            return True
        elif char == "{":
            close = pattern.find("}", i)
            if close != -1 and re.fullmatch(r"\d+,", pattern[i + 1 : close]):
                return True
        i += 1
    return False


def _compile_rule(category: FindingType, raw: Any) -> PatternRule:
    if not isinstance(raw, dict):
        raise ValueError("rule must be a mapping")
    rule_id = str(raw["id"])
    pattern = str(raw["pattern"])
    if has_unbounded_quantifier(pattern):
        raise ValueError(f"rule {rule_id} uses unbounded repetition")
    host_group = raw.get("host_group")
    return PatternRule(
        rule_id=rule_id,
        category=category,
        severity=FindingSeverity(raw["severity"]),
        regex=re.compile(pattern, re.IGNORECASE),
        host_group=int(host_group) if host_group is not None else None,
    )


def load_pattern_catalogue(path: Path = _CATALOGUE_PATH) -> PatternCatalogue:
    """Load and validate the pattern catalogue.

    Rules are validated per category. When any rule in a category is
    malformed, uses unbounded repetition, or fails to compile, the whole
    category is disabled and reported as degraded.

    Args:
        path: Path to the YAML catalogue.

    Returns:
        The compiled PatternCatalogue.

    Raises:
        PatternCatalogueError: If the file is missing, is not valid YAML, or
            does not contain a `categories` mapping.
    """
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise PatternCatalogueError(f"Cannot read pattern catalogue {path}: {exc}") from exc

    if not isinstance(raw, dict) or not isinstance(raw.get("categories"), dict):
        raise PatternCatalogueError(f"Pattern catalogue {path} has no categories mapping")

    rules: list[PatternRule] = []
    degraded: list[str] = []
    for name, raw_rules in raw["categories"].items():
        try:
            category = FindingType(name)
            if not isinstance(raw_rules, list):
                raise ValueError("category rules must be a list")
            compiled = [_compile_rule(category, item) for item in raw_rules]
        except (KeyError, ValueError, TypeError, re.error) as exc:
            logger.warning("Pattern category disabled", category=str(name), error=str(exc))
            degraded.append(str(name))
            continue
        rules.extend(compiled)

    allowed_hosts = frozenset(str(h).lower() for h in raw.get("allowed_hosts") or [])
    logger.debug(
        "Pattern catalogue loaded",
        rule_count=len(rules),
        degraded_categories=degraded,
        allowed_host_count=len(allowed_hosts),
    )
    return PatternCatalogue(rules=tuple(rules), allowed_hosts=allowed_hosts, degraded_categories=tuple(degraded))


def compute_risk_score(findings: list[Finding] | tuple[Finding, ...]) -> int:
    """Saturating severity-weighted risk score in [0, 100].

    The first three critical findings weigh 30 each and every further critical
    finding adds 5. Non-critical findings of one type add at most 30 together.

    Args:
        findings: Findings of one scan.

    Returns:
        The risk score.
    """
    score = 0
    critical_count = 0
    per_type: dict[FindingType, int] = defaultdict(int)
    for finding in findings:
        weight = SEVERITY_WEIGHTS[finding.severity]
        if finding.severity is FindingSeverity.CRITICAL:
            critical_count += 1
            score += weight if critical_count <= _FULL_WEIGHT_CRITICALS else _EXTRA_CRITICAL_WEIGHT
            continue
        added = min(weight, max(_NON_CRITICAL_TYPE_CAP - per_type[finding.type], 0))
        per_type[finding.type] += added
        score += added
    return min(score, _MAX_RISK_SCORE)


class ContentScanner:
    """Scans skill content against the pattern catalogue.

    Args:
        catalogue: Compiled catalogue. Loads the bundled catalogue when None.
        max_line_length: Characters of each line evaluated by patterns.
        max_scan_bytes: UTF-8 bytes of content considered per scan.
    """

    def __init__(
        self,
        catalogue: PatternCatalogue | None = None,
        max_line_length: int = 1000,
        max_scan_bytes: int = 100_000,
    ) -> None:
        self._catalogue = catalogue if catalogue is not None else load_pattern_catalogue()
        self._max_line_length = max_line_length
        self._max_scan_bytes = max_scan_bytes
        self._critical_rules = tuple(
            r for r in self._catalogue.rules if r.severity is FindingSeverity.CRITICAL
        )

    @property
    def catalogue(self) -> PatternCatalogue:
        return self._catalogue

    @property
    def degraded_categories(self) -> tuple[str, ...]:
        return self._catalogue.degraded_categories

    def with_rules(self, extra_rules: tuple[PatternRule, ...]) -> "ContentScanner":
        """Return a scanner with the same limits and extra rules appended to the catalogue."""
        catalogue = replace(self._catalogue, rules=self._catalogue.rules + extra_rules)
        return ContentScanner(catalogue, self._max_line_length, self._max_scan_bytes)

    def scan(self, skill_id: str, content: str) -> ScanReport:
        """Scan content and return a deterministic report.

        Never raises on malformed input; non-string content is scanned as empty.

        Args:
            skill_id: Identifier of the skill being scanned.
            content: Skill markdown.

        Returns:
            ScanReport with findings ordered by line, then catalogue order.
        """
        if not isinstance(content, str):
            logger.warning("Non-text content scanned as empty", skill_id=skill_id)
            content = ""

        content_hash = hashlib.sha256(content.encode("utf-8", errors="replace")).hexdigest()
        lines, truncated = self._prepare_lines(content)

        findings: list[Finding] = []
        for line_number, line in enumerate(lines, start=1):
            for rule in self._catalogue.rules:
                if self._matches(rule, line):
                    findings.append(
                        Finding(
                            type=rule.category,
                            severity=rule.severity,
                            line=line_number,
                            snippet=line.strip()[:_SNIPPET_LENGTH],
                            rule_id=rule.rule_id,
                        )
                    )

        report = ScanReport(
            skill_id=skill_id,
            findings=tuple(findings),
            risk_score=compute_risk_score(findings),
            content_hash=content_hash,
            truncated=truncated,
            degraded_categories=self._catalogue.degraded_categories,
        )

        if truncated:
            logger.warning(
                "Content exceeded scan cap, prefix scanned only",
                skill_id=skill_id,
                max_scan_bytes=self._max_scan_bytes,
            )
        logger.info(
            "Content scan completed",
            skill_id=skill_id,
            finding_count=len(findings),
            risk_score=report.risk_score,
            passed=report.passed,
        )
        return report

    def quick_check(self, content: str) -> bool:
        """Fast pre-filter over critical rules only.

        Args:
            content: Skill markdown.

        Returns:
            True when no critical pattern matched the scanned prefix. False means
            the content must go through a full scan.
        """
        if not isinstance(content, str):
            return True
        lines, _ = self._prepare_lines(content)
        for line in lines:
            for rule in self._critical_rules:
                if self._matches(rule, line):
                    return False
        return True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _prepare_lines(self, content: str) -> tuple[list[str], bool]:
        encoded = content.encode("utf-8", errors="replace")
        truncated = len(encoded) > self._max_scan_bytes
        if truncated:
            content = encoded[: self._max_scan_bytes].decode("utf-8", errors="ignore")
        content = content.translate(_INVISIBLE_CHARS)
        lines = [line[: self._max_line_length] for line in _LINE_BREAK.split(content)]
        return lines, truncated

    def _matches(self, rule: PatternRule, line: str) -> bool:
        if rule.host_group is None:
            return rule.regex.search(line) is not None
        for match in rule.regex.finditer(line):
            host = match.group(rule.host_group).lower().rstrip(".")
            if rule.blocked_hosts:
                if _host_in(host, rule.blocked_hosts):
                    return True
            elif not _host_in(host, self._catalogue.allowed_hosts):
                return True
        return False


def _host_in(host: str, hosts: frozenset[str]) -> bool:
    return any(host == candidate or host.endswith("." + candidate) for candidate in hosts)
