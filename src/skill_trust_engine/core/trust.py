"""Trust tier classification.

Rules are evaluated in order and the first match wins:

1. Namespace is an official namespace          -> official
2. Any critical finding                        -> unverified
3. Signature verified, clean scan, old enough,
   and popular enough                          -> verified
4. Clean scan and required docs present        -> community
5. Otherwise                                   -> unverified

A "clean scan" has no finding at medium severity or above. The classifier
never produces `experimental`.
"""

from collections.abc import Iterable
from datetime import datetime

from skill_trust_engine.core.types import ScanReport, SkillMetadata, TrustTier
from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)


class TrustTierClassifier:
    """Assigns a trust tier from publisher signals and a scan report.

    Args:
        official_namespaces: Publisher namespaces labelled official.
        verified_min_age_days: Minimum age for the verified tier.
        verified_min_stars: Minimum popularity for the verified tier.
        required_documentation_files: Files required for the community tier.
    """

    def __init__(
        self,
        official_namespaces: Iterable[str] = ("anthropics",),
        verified_min_age_days: int = 30,
        verified_min_stars: int = 50,
        required_documentation_files: Iterable[str] = ("SKILL.md", "README.md"),
    ) -> None:
        self._official_namespaces = frozenset(ns.lower() for ns in official_namespaces)
        self._verified_min_age_days = verified_min_age_days
        self._verified_min_stars = verified_min_stars
        self._required_docs = frozenset(required_documentation_files)

    def classify(
        self,
        metadata: SkillMetadata,
        report: ScanReport,
        now: datetime | None = None,
    ) -> TrustTier:
        """Classify a skill.

        Args:
            metadata: Publisher signals from the sync collaborator.
            report: Scan report for the skill's current content.
            now: Reference time for the age check. Defaults to now (UTC).

        Returns:
            The assigned TrustTier.
        """
        tier = self._classify(metadata, report, now)
        logger.debug("Trust tier assigned", skill_id=metadata.skill_id, tier=tier.value)
        return tier

    def _classify(self, metadata: SkillMetadata, report: ScanReport, now: datetime | None) -> TrustTier:
        if metadata.namespace.lower() in self._official_namespaces:
            return TrustTier.OFFICIAL

        if report.has_critical:
            return TrustTier.UNVERIFIED

        if (
            metadata.publisher_signature_verified
            and report.is_clean
            and metadata.age_days(now) >= self._verified_min_age_days
            and metadata.stars >= self._verified_min_stars
        ):
            return TrustTier.VERIFIED

        if report.is_clean and self._required_docs <= metadata.documentation_files:
            return TrustTier.COMMUNITY

        return TrustTier.UNVERIFIED
