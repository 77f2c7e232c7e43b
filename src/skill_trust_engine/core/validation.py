"""Edition-specific validation capabilities.

The edition is chosen once at startup by `build_validation_capability` and
the resulting capability is injected into the pipeline. Nothing probes for
enterprise features per call.

- CommunityValidation: the content scanner with the bundled catalogue.
- EnterpriseValidation: the same scanner plus the organisation's blocked-host
  policy. A URL on a blocked host is a critical exfiltration finding.
"""

import re
from collections.abc import Iterable

from skill_trust_engine.core.scanner import ContentScanner, PatternRule
from skill_trust_engine.core.types import FindingSeverity, FindingType, ScanReport
from skill_trust_engine.errors import ValidationError
from skill_trust_engine.observability import get_logger
from skill_trust_engine.settings import Settings

logger = get_logger(__name__)

_URL_HOST = re.compile(r"https?://([a-z0-9.-]{1,253})", re.IGNORECASE)

EDITION_COMMUNITY = "community"
EDITION_ENTERPRISE = "enterprise"


class CommunityValidation:
    """Scanner-only validation.

    Args:
        scanner: Content scanner to delegate to.
    """

    def __init__(self, scanner: ContentScanner) -> None:
        self._scanner = scanner

    @property
    def edition(self) -> str:
        return EDITION_COMMUNITY

    def scan(self, skill_id: str, content: str) -> ScanReport:
        return self._scanner.scan(skill_id, content)

    def quick_check(self, content: str) -> bool:
        return self._scanner.quick_check(content)


class EnterpriseValidation:
    """Scanner plus organisation blocked-host policy.

    Blocked hosts are checked with the same line-by-line, length-capped
    evaluation as the catalogue, after every catalogue rule.

    Args:
        scanner: Base content scanner.
        blocked_hosts: Hosts skills must not contact. Subdomains are blocked too.
    """

    def __init__(self, scanner: ContentScanner, blocked_hosts: Iterable[str]) -> None:
        self._blocked_hosts = frozenset(h.lower().rstrip(".") for h in blocked_hosts if h)
        if self._blocked_hosts:
            policy_rule = PatternRule(
                rule_id="org-blocked-host",
                category=FindingType.EXFILTRATION,
                severity=FindingSeverity.CRITICAL,
                regex=_URL_HOST,
                host_group=1,
                blocked_hosts=self._blocked_hosts,
            )
            self._scanner = scanner.with_rules((policy_rule,))
        else:
            self._scanner = scanner

    @property
    def edition(self) -> str:
        return EDITION_ENTERPRISE

    @property
    def blocked_hosts(self) -> frozenset[str]:
        return self._blocked_hosts

    def scan(self, skill_id: str, content: str) -> ScanReport:
        return self._scanner.scan(skill_id, content)

    def quick_check(self, content: str) -> bool:
        return self._scanner.quick_check(content)


def build_validation_capability(
    settings: Settings,
    scanner: ContentScanner | None = None,
) -> CommunityValidation | EnterpriseValidation:
    """Select the validation capability for the configured edition.

    Args:
        settings: Service settings. `edition` selects the capability.
        scanner: Base scanner. Built from settings when None.

    Returns:
        The capability to inject into the pipeline.

    Raises:
        ValidationError: If the edition is not recognised.
    """
    if scanner is None:
        scanner = ContentScanner(
            max_line_length=settings.scan_max_line_length,
            max_scan_bytes=settings.scan_max_bytes,
        )

    edition = settings.edition.lower()
    if edition == EDITION_COMMUNITY:
        capability: CommunityValidation | EnterpriseValidation = CommunityValidation(scanner)
    elif edition == EDITION_ENTERPRISE:
        capability = EnterpriseValidation(scanner, settings.enterprise_blocked_hosts)
    else:
        raise ValidationError(f"Unknown edition: {settings.edition}", field="edition")

    logger.info("Validation capability selected", edition=capability.edition)
    return capability
