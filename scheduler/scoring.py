"""
Severity Scoring Engine for modification impact.

Unlike validation (binary Yes/No), this provides a gradient that tells
staff how disruptive a proposed change is before anyone approves it.
"""

from typing import Dict, Iterable, List

from models import ModificationType, Severity


class SeverityScorer:
    """
    Weighted additive score:
    type base + capped session load + capped therapist load + disruption.
    """

    TYPE_BASE: Dict[str, float] = {
        ModificationType.FREEZE.value: 1.0,
        ModificationType.SCHEDULE_CHANGE.value: 2.0,
        ModificationType.THERAPIST_CHANGE.value: 3.0,
        ModificationType.PROGRAM_CHANGE.value: 3.0,
    }
    SESSION_DIVISOR = 10
    SESSION_CAP = 3.0
    THERAPIST_DIVISOR = 2
    THERAPIST_CAP = 2.0
    DISRUPTION_WEIGHT = 2.0

    MEDIUM_THRESHOLD = 3.5
    HIGH_THRESHOLD = 6.0

    def calculate_score(
        self,
        modification_type: ModificationType,
        session_count: int,
        therapist_count: int,
        disruption_ratio: float
    ) -> float:
        """
        Master scoring function. `disruption_ratio` is a fraction in [0, 1].
        """
        score = self._score_type(modification_type)
        score += self._score_sessions(session_count)
        score += self._score_therapists(therapist_count)
        score += self._score_disruption(disruption_ratio)
        return round(score, 2)

    def classify(self, score: float) -> Severity:
        if score >= self.HIGH_THRESHOLD:
            return Severity.HIGH
        if score >= self.MEDIUM_THRESHOLD:
            return Severity.MEDIUM
        return Severity.LOW

    def bulk_severity(self, severities: Iterable[Severity]) -> Severity:
        """
        Roll many analyses into one level:
        high if >30% are high; medium if >10% high or >50% medium.
        """
        levels: List[Severity] = list(severities)
        if not levels:
            return Severity.LOW
        total = len(levels)
        high_share = sum(1 for s in levels if s == Severity.HIGH) / total
        medium_share = sum(1 for s in levels if s == Severity.MEDIUM) / total
        if high_share > 0.3:
            return Severity.HIGH
        if high_share > 0.1 or medium_share > 0.5:
            return Severity.MEDIUM
        return Severity.LOW

    def _score_type(self, modification_type: ModificationType) -> float:
        return self.TYPE_BASE.get(ModificationType(modification_type).value, 1.0)

    def _score_sessions(self, session_count: int) -> float:
        return min(session_count / self.SESSION_DIVISOR, self.SESSION_CAP)

    def _score_therapists(self, therapist_count: int) -> float:
        return min(therapist_count / self.THERAPIST_DIVISOR, self.THERAPIST_CAP)

    def _score_disruption(self, disruption_ratio: float) -> float:
        return max(0.0, min(disruption_ratio, 1.0)) * self.DISRUPTION_WEIGHT
