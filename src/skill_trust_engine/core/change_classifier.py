"""Heuristic change classification between two versions of a skill.

Evidence is weighed in this order:

1. A structural regression is always major: a removed H2/H3 heading, a risk
   score jump above 20, or a removed declared dependency.
2. An author-declared semver delta, used only when both versions declare one
   and they differ.
3. Headings or dependencies added with nothing removed -> minor.
4. Anything else, including identical content -> patch.

Author-declared versions are adversarial input, so they can escalate a
classification but never hide a structural regression. Any internal failure
yields `unknown`; the classifier never raises.
"""

import re
from typing import Any

import yaml

from skill_trust_engine.core.types import ChangeType
from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)

_FRONTMATTER = re.compile(r"\A---\r?\n(.*?)\r?\n---", re.DOTALL)
_SEMVER = re.compile(r"^\s*v?(\d+)\.(\d+)\.(\d+)")
_STRUCTURAL_HEADING = re.compile(r"^#{2,3}\s+(.+)")
_ANY_HEADING = re.compile(r"^#{1,3}\s+")
_DEPENDENCY_HEADING = re.compile(r"^#{1,3}\s+(dependencies|requirements|requires)", re.IGNORECASE)
_BULLET = re.compile(r"^[-*]\s+(\S+)")

RISK_JUMP_THRESHOLD = 20
MAX_FRONTMATTER_CHARS = 4096


class _FrontmatterLoader(yaml.SafeLoader):
    """SafeLoader that refuses YAML aliases.

    Frontmatter is a handful of flat keys, so any alias is treated as an
    expansion attack and rejected before the node graph is built.
    """

    def compose_node(self, parent: Any, index: Any) -> Any:
        if self.check_event(yaml.AliasEvent):
            event = self.peek_event()
            raise yaml.composer.ComposerError(
                None, None, "aliases are not allowed in skill frontmatter", event.start_mark
            )
        return super().compose_node(parent, index)


def _parse_frontmatter(content: str) -> dict[str, Any]:
    match = _FRONTMATTER.match(content)
    if not match:
        return {}
    text = match.group(1)
    if len(text) > MAX_FRONTMATTER_CHARS:
        logger.warning("Frontmatter too large, ignoring", length=len(text), limit=MAX_FRONTMATTER_CHARS)
        return {}
    try:
        data = yaml.load(text, Loader=_FrontmatterLoader)  # noqa: S506
    except (yaml.YAMLError, RecursionError) as exc:
        logger.info("Frontmatter ignored", error=str(exc))
        return {}
    return data if isinstance(data, dict) else {}


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def _semver(frontmatter: dict[str, Any]) -> tuple[int, int, int] | None:
    raw = frontmatter.get("version") or frontmatter.get("semver")
    if raw is None or not _is_scalar(raw):
        return None
    match = _SEMVER.match(str(raw))
    if not match:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def _classify_semver(old: tuple[int, int, int], new: tuple[int, int, int]) -> ChangeType:
    # Downgrades count the same as upgrades
    if old[0] != new[0]:
        return ChangeType.MAJOR
    if old[1] != new[1]:
        return ChangeType.MINOR
    return ChangeType.PATCH


def _headings(content: str) -> set[str]:
    headings = set()
    for line in content.splitlines():
        match = _STRUCTURAL_HEADING.match(line)
        if match:
            headings.add(match.group(1).strip().lower())
    return headings


def _dependencies(content: str, frontmatter: dict[str, Any]) -> set[str]:
    deps: set[str] = set()

    declared = frontmatter.get("dependencies") or frontmatter.get("requires") or []
    if isinstance(declared, str):
        declared = declared.strip("[]").split(",")
    if isinstance(declared, list):
        deps.update(str(d).strip().lower() for d in declared if _is_scalar(d) and str(d).strip())

    in_section = False
    for line in content.splitlines():
        if _DEPENDENCY_HEADING.match(line):
            in_section = True
            continue
        if _ANY_HEADING.match(line):
            in_section = False
            continue
        if in_section:
            match = _BULLET.match(line)
            if match:
                deps.add(match.group(1).strip().lower())

    return deps


def declared_version(content: str) -> str | None:
    """Return the frontmatter version as MAJOR.MINOR.PATCH, or None."""
    if not isinstance(content, str):
        return None
    version = _semver(_parse_frontmatter(content))
    if version is None:
        return None
    return ".".join(str(part) for part in version)


def classify_change(
    old_content: str,
    new_content: str,
    old_risk: int | None = None,
    new_risk: int | None = None,
) -> ChangeType:
    """Classify the change between two versions of a skill.

    Args:
        old_content: Previous skill markdown.
        new_content: Updated skill markdown.
        old_risk: Risk score of the previous version, if known.
        new_risk: Risk score of the updated version, if known.

    Returns:
        major, minor, patch, or unknown. Never raises.
    """
    try:
        return _classify(old_content, new_content, old_risk, new_risk)
    except Exception as exc:
        logger.warning("Change classification failed", error=str(exc))
        return ChangeType.UNKNOWN


def _classify(
    old_content: str,
    new_content: str,
    old_risk: int | None,
    new_risk: int | None,
) -> ChangeType:
    old_fm = _parse_frontmatter(old_content)
    new_fm = _parse_frontmatter(new_content)

    old_headings = _headings(old_content)
    new_headings = _headings(new_content)
    if old_headings - new_headings:
        return ChangeType.MAJOR

    if isinstance(old_risk, int) and isinstance(new_risk, int) and new_risk - old_risk > RISK_JUMP_THRESHOLD:
        return ChangeType.MAJOR

    old_deps = _dependencies(old_content, old_fm)
    new_deps = _dependencies(new_content, new_fm)
    if old_deps - new_deps:
        return ChangeType.MAJOR

    old_semver = _semver(old_fm)
    new_semver = _semver(new_fm)
    if old_semver and new_semver and old_semver != new_semver:
        return _classify_semver(old_semver, new_semver)

    if new_headings - old_headings or new_deps - old_deps:
        return ChangeType.MINOR

    return ChangeType.PATCH
