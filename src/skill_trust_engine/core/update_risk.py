"""Update risk scoring for a proposed skill upgrade.

Scoring table (additive):
    change_type is major        +30
    risk_delta > 0              +20
    has_local_modifications     +20
    trust_tier is verified      -20
    has_changelog               -10

Level buckets: <=20 low, <=40 medium, <=60 high, else critical.
Recommendation buckets: <=20 auto-update, <=50 review-then-update, else
manual-review-required. The two bucket tables use different thresholds on
purpose; a score of 45 is a high level with a review-then-update recommendation.
"""

from skill_trust_engine.core.types import ChangeType, Recommendation, RiskLevel, TrustTier, UpdateRisk

SCORE_MAJOR_CHANGE = 30
SCORE_RISK_INCREASE = 20
SCORE_LOCAL_MODIFICATIONS = 20
SCORE_VERIFIED_TIER = -20
SCORE_CHANGELOG = -10

_LEVEL_BUCKETS: tuple[tuple[int, RiskLevel], ...] = (
    (20, RiskLevel.LOW),
    (40, RiskLevel.MEDIUM),
    (60, RiskLevel.HIGH),
)
_RECOMMENDATION_BUCKETS: tuple[tuple[int, Recommendation], ...] = (
    (20, Recommendation.AUTO_UPDATE),
    (50, Recommendation.REVIEW_THEN_UPDATE),
)


def _level(score: int) -> RiskLevel:
    for upper, level in _LEVEL_BUCKETS:
        if score <= upper:
            return level
    return RiskLevel.CRITICAL


def _recommendation(score: int) -> Recommendation:
    for upper, recommendation in _RECOMMENDATION_BUCKETS:
        if score <= upper:
            return recommendation
    return Recommendation.MANUAL_REVIEW_REQUIRED


def compute_update_risk(
    change_type: ChangeType,
    risk_delta: int | None,
    has_local_modifications: bool,
    trust_tier: TrustTier,
    has_changelog: bool,
) -> UpdateRisk:
    """Compute the risk of applying an update.

    Args:
        change_type: Classified change between the installed and new version.
        risk_delta: New scan risk score minus old, when both are known.
        has_local_modifications: Whether the user edited the installed skill.
        trust_tier: Trust tier of the skill.
        has_changelog: Whether the update ships a changelog entry.

    Returns:
        UpdateRisk with level, raw score, and recommendation.
    """
    score = 0
    if change_type == ChangeType.MAJOR:
        score += SCORE_MAJOR_CHANGE
    if risk_delta is not None and risk_delta > 0:
        score += SCORE_RISK_INCREASE
    if has_local_modifications:
        score += SCORE_LOCAL_MODIFICATIONS
    if trust_tier == TrustTier.VERIFIED:
        score += SCORE_VERIFIED_TIER
    if has_changelog:
        score += SCORE_CHANGELOG

    return UpdateRisk(
        level=_level(score),
        score=score,
        recommendation=_recommendation(score),
    )
