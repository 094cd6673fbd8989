"""
Unit tests for impact analysis and severity scoring.

On 2025-05-20 sub-1 has five remaining sessions (05-21 .. 06-04), all with T1.
"""

import pytest
from datetime import date

from models import (
    BulkModificationTemplate, ModificationType, ProgramChangeRequest,
    ScenarioSpec, ScheduleChangeRequest, Severity, Stakeholder, TherapistChangeRequest
)
from scheduler.errors import ValidationError
from scheduler.scoring import SeverityScorer


@pytest.fixture
def therapist_change():
    return TherapistChangeRequest(id="mod-t2", subscription_id="sub-1", effective_date=date(2025, 5, 21),
                                  proposed_changes={"new_therapist_id": "T2"})


class TestSeverityScorer:

    def test_score_components(self):
        scorer = SeverityScorer()
        # 1 (freeze) + 0.2 (2 sessions) + 0.5 (1 therapist) + 0.8 (40% disruption)
        assert scorer.calculate_score(ModificationType.FREEZE, 2, 1, 0.4) == 2.5

    def test_caps(self):
        scorer = SeverityScorer()
        assert scorer.calculate_score(ModificationType.PROGRAM_CHANGE, 500, 50, 3.0) == 10.0

    @pytest.mark.parametrize("score,expected", [
        (2.5, Severity.LOW), (3.5, Severity.MEDIUM), (5.99, Severity.MEDIUM), (6.0, Severity.HIGH),
    ])
    def test_classify(self, score, expected):
        assert SeverityScorer().classify(score) == expected

    def test_bulk_severity(self):
        scorer = SeverityScorer()
        assert scorer.bulk_severity([Severity.HIGH] * 4 + [Severity.LOW] * 6) == Severity.HIGH
        assert scorer.bulk_severity([Severity.HIGH] * 2 + [Severity.LOW] * 8) == Severity.MEDIUM
        assert scorer.bulk_severity([Severity.MEDIUM] * 6 + [Severity.LOW] * 4) == Severity.MEDIUM
        assert scorer.bulk_severity([Severity.LOW] * 10) == Severity.LOW
        assert scorer.bulk_severity([]) == Severity.LOW


class TestSingleAnalysis:

    def test_freeze_analysis(self, service, make_freeze):
        analysis = service.impact.analyze_modification_impact(make_freeze())

        assert analysis.affected_session_ids == ["sub-1-s009", "sub-1-s010"]
        assert analysis.affected_therapist_ids == ["T1"]
        assert analysis.total_remaining_sessions == 5
        assert analysis.schedule_disruption_percentage == 40.0
        assert analysis.severity_score == 2.5
        assert analysis.overall_severity == Severity.LOW
        assert analysis.estimated_adjustment_time_minutes == 120

        costs = analysis.cost_implications
        assert costs.original_projection == 2400.0
        assert costs.net_impact == -150.0
        assert costs.cost_savings == 150.0
        assert costs.additional_costs == 0.0

        assert analysis.stakeholder_notifications_required == [
            Stakeholder.PARENT, Stakeholder.THERAPIST, Stakeholder.BILLING_ADMIN
        ]
        assert len(analysis.recommendations.risks) == 1
        assert analysis.recommendations.alternatives == []

    def test_therapist_change_is_high(self, service, therapist_change):
        analysis = service.impact.analyze_modification_impact(therapist_change)

        assert analysis.affected_session_count == 5
        assert analysis.affected_therapist_ids == ["T1", "T2"]
        assert analysis.severity_score == 6.5
        assert analysis.overall_severity == Severity.HIGH
        assert analysis.cost_implications.net_impact == 50.0
        assert analysis.estimated_adjustment_time_minutes == 270
        assert len(analysis.recommendations.alternatives) == 2
        assert analysis.recommendations.priority == Severity.HIGH

    def test_schedule_change_duration_cost(self, service):
        """Five 45-minute sessions at 150 grow to 60 minutes: +50 each."""
        request = ScheduleChangeRequest(id="mod-s", subscription_id="sub-1", effective_date=date(2025, 5, 21),
                                        proposed_changes={"new_duration_minutes": 60})
        analysis = service.impact.analyze_modification_impact(request)
        assert analysis.cost_implications.net_impact == 250.0

    def test_program_change_cost_and_stakeholders(self, service):
        request = ProgramChangeRequest(id="mod-p", subscription_id="sub-1", effective_date=date(2025, 5, 21),
                                       proposed_changes={"new_sessions_total": 20, "new_session_price": 140.0})
        analysis = service.impact.analyze_modification_impact(request)

        assert analysis.cost_implications.adjusted_projection == 2800.0
        assert analysis.cost_implications.net_impact == 400.0
        assert Stakeholder.BILLING_ADMIN in analysis.stakeholder_notifications_required

    def test_scope_limits_affected_sessions(self, service):
        """Sessions before the effective date are never touched."""
        request = ScheduleChangeRequest(id="mod-f", subscription_id="sub-1", effective_date=date(2025, 5, 27),
                                        scope="future_only", proposed_changes={"new_start_time": "11:00"})
        analysis = service.impact.analyze_modification_impact(request)
        assert analysis.affected_session_ids == ["sub-1-s008", "sub-1-s009", "sub-1-s010"]
        assert analysis.total_remaining_sessions == 5

    def test_unknown_subscription(self, service, make_freeze):
        with pytest.raises(ValidationError) as exc_info:
            service.impact.analyze_modification_impact(make_freeze(subscription_id="sub-404"))
        assert exc_info.value.code == "SUBSCRIPTION_NOT_FOUND"

    def test_analysis_is_read_only(self, service, session_store, subscription_store, make_freeze):
        sessions_before = session_store.list_sessions("sub-1")
        sub_before = subscription_store.get("sub-1")

        service.impact.analyze_modification_impact(make_freeze())

        assert session_store.list_sessions("sub-1") == sessions_before
        assert subscription_store.get("sub-1") == sub_before


class TestScenarioComparison:

    def test_ranking(self, service, make_freeze, therapist_change):
        comparison = service.impact.compare_scenarios("sub-1", [
            ScenarioSpec(name_en="Pause a week", name_ar="إيقاف لمدة أسبوع", request=make_freeze()),
            ScenarioSpec(name_en="Switch therapist", name_ar="تغيير المعالج", request=therapist_change),
        ])

        freeze, switch = comparison.scenarios
        assert freeze.normalized_cost == 1.0
        assert freeze.composite_score == 4.5
        assert switch.composite_score == pytest.approx(7.1667, abs=1e-4)
        assert comparison.recommended.name_en == "Pause a week"
        assert comparison.lowest_cost.name_en == "Pause a week"
        assert comparison.least_disruptive.name_en == "Pause a week"
        assert comparison.fastest.name_en == "Pause a week"

    def test_requests_are_pinned_to_subscription(self, service, make_freeze):
        comparison = service.impact.compare_scenarios("sub-1", [
            ScenarioSpec(name_en="Elsewhere", request=make_freeze(subscription_id="sub-77")),
        ])
        assert comparison.scenarios[0].analysis.subscription_id == "sub-1"

    def test_empty_list_rejected(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.impact.compare_scenarios("sub-1", [])
        assert exc_info.value.code == "NO_SCENARIOS"


class TestBulkAnalysis:

    @pytest.fixture
    def template(self):
        return BulkModificationTemplate(
            type="freeze",
            effective_date=date(2025, 6, 1),
            proposed_changes={"start_date": "2025-06-01", "end_date": "2025-06-07",
                              "reason": "Clinic maintenance week"}
        )

    def test_failures_are_collected(self, service, template):
        result = service.impact.analyze_bulk_impact(["sub-1", "sub-404", "", 42, "bad id!"], template)

        assert result.aggregate.total_enrollments == 5
        assert result.aggregate.successful == 1
        assert result.aggregate.failed == 4
        assert [f.code for f in result.failed_analyses] == [
            "SUBSCRIPTION_NOT_FOUND", "INVALID_SUBSCRIPTION_ID", "INVALID_SUBSCRIPTION_ID", "INVALID_SUBSCRIPTION_ID"
        ]

    def test_malformed_template_per_item(self, service):
        template = BulkModificationTemplate(type="freeze", effective_date=date(2025, 6, 1),
                                            proposed_changes={"start_date": "soon"})
        result = service.impact.analyze_bulk_impact(["sub-1"], template)
        assert result.failed_analyses[0].code == "MALFORMED_REQUEST"

    def test_aggregate_over_successes(self, service, template):
        result = service.impact.analyze_bulk_impact(["sub-1", "sub-404"], template)
        aggregate = result.aggregate

        assert aggregate.total_affected_sessions == 2
        assert aggregate.total_affected_therapists == 1
        assert aggregate.total_cost_impact == -150.0
        assert aggregate.estimated_total_time_minutes == 120
        assert aggregate.overall_severity == Severity.LOW
