"""
Engagement Scorer Module

Maps one SubjectObservation to an engagement score (0-100) and a three-way
classification. Pure and deterministic: no state is kept between calls, so the
same observation always scores the same no matter which other faces were
scored before it.

Scoring (all adjustments are additive and commute; clamping happens once):
  - Start at 70
  - Yawning: -25
  - Looking down: -20
  - Negative expressions above 0.5 (sad -10, angry -10, fearful -5,
    disgusted -5) and dominant neutral above 0.7 (-5), capped at -20 combined
  - Happy above 0.5: +15; surprised above 0.3: +10
  - Clamp to [0, 100]

Classification: score >= 65 engaged, score < 40 bored, otherwise neutral.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from utils.feature_extractor_interface import SubjectObservation


class Classification(Enum):
    """Per-subject engagement label."""
    ENGAGED = "engaged"
    NEUTRAL = "neutral"
    BORED = "bored"

    @classmethod
    def from_score(cls, score: float) -> 'Classification':
        """
        Classify a clamped score.

        Args:
            score: Engagement score (0-100)

        Returns:
            Classification enum value
        """
        if score >= EngagementScorer.ENGAGED_MIN:
            return cls.ENGAGED
        if score < EngagementScorer.BORED_BELOW:
            return cls.BORED
        return cls.NEUTRAL


@dataclass(frozen=True)
class ScoredSubject:
    """An observation with its score and label. Lives for one tick."""
    observation: SubjectObservation
    engagement_score: float
    classification: Classification

    def to_dict(self) -> dict:
        out = self.observation.to_dict()
        out["engagementScore"] = float(self.engagement_score)
        out["classification"] = self.classification.value
        return out


class EngagementScorer:
    """
    Computes engagement scores from subject observations.

    Usage:
        scorer = EngagementScorer()
        scored = scorer.score(observation)
        print(scored.engagement_score, scored.classification.value)
    """

    BASE_SCORE = 70.0
    YAWN_PENALTY = 25.0
    LOOKING_DOWN_PENALTY = 20.0

    # Expression thresholds
    NEGATIVE_EXPRESSION_MIN = 0.5
    NEUTRAL_DOMINANT_MIN = 0.7
    HAPPY_MIN = 0.5
    SURPRISED_MIN = 0.3

    NEGATIVE_PENALTIES: Dict[str, float] = {
        "sad": 10.0,
        "angry": 10.0,
        "fearful": 5.0,
        "disgusted": 5.0,
    }
    # Passive disengagement, smaller than any distress penalty
    NEUTRAL_PENALTY = 5.0
    MAX_EXPRESSION_PENALTY = 20.0

    HAPPY_BONUS = 15.0
    SURPRISED_BONUS = 10.0

    # Classification boundaries
    ENGAGED_MIN = 65.0
    BORED_BELOW = 40.0

    def expression_penalty(self, expressions: Dict[str, float]) -> float:
        """Combined negative-expression penalty, capped at MAX_EXPRESSION_PENALTY."""
        penalty = sum(
            amount
            for key, amount in self.NEGATIVE_PENALTIES.items()
            if expressions.get(key, 0.0) > self.NEGATIVE_EXPRESSION_MIN
        )
        if expressions.get("neutral", 0.0) > self.NEUTRAL_DOMINANT_MIN:
            penalty += self.NEUTRAL_PENALTY
        return min(penalty, self.MAX_EXPRESSION_PENALTY)

    def expression_bonus(self, expressions: Dict[str, float]) -> float:
        bonus = 0.0
        if expressions.get("happy", 0.0) > self.HAPPY_MIN:
            bonus += self.HAPPY_BONUS
        if expressions.get("surprised", 0.0) > self.SURPRISED_MIN:
            bonus += self.SURPRISED_BONUS
        return bonus

    def calculate_score(self, observation: SubjectObservation) -> float:
        """
        Calculate the engagement score for one observation.

        Args:
            observation: SubjectObservation from the feature extractor

        Returns:
            float: Score clamped to [0, 100]
        """
        score = self.BASE_SCORE
        if observation.is_yawning:
            score -= self.YAWN_PENALTY
        if observation.is_looking_down:
            score -= self.LOOKING_DOWN_PENALTY
        score -= self.expression_penalty(observation.expressions)
        score += self.expression_bonus(observation.expressions)
        return float(max(0.0, min(100.0, score)))

    def score(self, observation: SubjectObservation) -> ScoredSubject:
        """Score and classify one observation."""
        value = self.calculate_score(observation)
        return ScoredSubject(
            observation=observation,
            engagement_score=value,
            classification=Classification.from_score(value),
        )
