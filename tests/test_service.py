"""
Integration tests for the SubscriptionModificationService facade.

Covers the full commit path: validation, rescheduling, subscription update,
broadcast, rollback, and the envelopes returned for every failure mode.
"""

import threading
import pytest
from datetime import date

from models import (
    ModificationType, SessionStatus, Subscription, SubscriptionStatus, TherapistChangeRequest
)
from scheduler.service import SubscriptionModificationService
from scheduler.stores import InMemorySessionStore, InMemorySubscriptionStore


def snapshot(store, subscription_id="sub-1"):
    return [s.model_dump() for s in store.list_sessions(subscription_id)]


class TestFreezeCommit:
    """The reference freeze on sub-1 committed end to end."""

    def test_commit_updates_contract_and_sessions(self, service, subscription_store, session_store, make_freeze):
        result = service.freeze_subscription(make_freeze(), implemented_by="coordinator-1")

        assert result.success, result.error
        record = result.data
        assert record.new_end_date == date(2025, 7, 7)
        assert record.sessions_updated == 2
        assert record.conflicts_detected == []
        assert record.implemented_by == "coordinator-1"
        assert record.rollback_token

        sub = subscription_store.get("sub-1")
        assert sub.freeze_days_used == 7
        assert sub.end_date == date(2025, 7, 7)
        assert sub.end_date >= sub.original_end_date
        assert sub.status == SubscriptionStatus.ACTIVE
        assert len(sub.freezes) == 1
        assert sub.freezes[0].adjustment_days == 7

        assert session_store.get_session("sub-1-s009").date == date(2025, 6, 9)
        assert session_store.get_session("sub-1-s010").date == date(2025, 6, 11)

    def test_freeze_covering_today_sets_frozen(self, service, subscription_store, make_freeze, today):
        result = service.freeze_subscription(make_freeze(start_date=today, end_date=date(2025, 5, 22)))

        assert result.success, result.error
        assert subscription_store.get("sub-1").status == SubscriptionStatus.FROZEN

    def test_broadcast_and_notifications(self, service, dispatcher, make_freeze):
        events = []
        service.subscribe_to_subscription("sub-1", events.append)

        result = service.freeze_subscription(make_freeze())

        assert [e.event_type.value for e in events] == [
            "subscription_updated", "sessions_rescheduled", "modification_implemented", "cache_invalidated"
        ]
        assert [e.sequence for e in events] == [1, 2, 3, 4]
        assert result.data.notifications_sent == 3
        assert {p.recipient_type.value for p in dispatcher.sent} == {"parent", "therapist", "billing_admin"}
        assert all(p.title_ar and p.body_ar for p in dispatcher.sent)

    def test_audit_trail(self, service, make_freeze):
        service.freeze_subscription(make_freeze(), implemented_by="coordinator-1")
        history = service.get_modification_history("sub-1").data

        assert len(history) == 1
        assert history[0].type == ModificationType.FREEZE
        assert history[0].implemented_by == "coordinator-1"
        assert history[0].proposed_changes["start_date"] == "2025-06-01"

    def test_invalid_freeze_is_rejected(self, service, subscription_store, make_freeze):
        result = service.freeze_subscription(make_freeze(end_date=date(2025, 6, 20)))

        assert not result.success
        assert result.error.code == "VALIDATION_FAILED"
        assert "INSUFFICIENT_FREEZE_DAYS" in [e["code"] for e in result.error.details["errors"]]
        assert subscription_store.get("sub-1").freeze_days_used == 0

    def test_accepts_raw_payload(self, service):
        result = service.freeze_subscription({
            "id": "mod-raw",
            "subscription_id": "sub-1",
            "proposed_changes": {"start_date": "2025-06-01", "end_date": "2025-06-07",
                                 "reason": "Family travel during school break"},
        })
        assert result.success, result.error

    def test_malformed_payload(self, service):
        result = service.freeze_subscription({
            "id": "mod-bad", "subscription_id": "sub-1",
            "proposed_changes": {"start_date": "someday", "end_date": "2025-06-07"},
        })
        assert not result.success
        assert result.error.code == "MALFORMED_REQUEST"
        assert "start_date" in result.error.message_en


class TestImplementModification:

    def test_requires_approval(self, service, make_freeze):
        analysis = service.analyze_modification_impact(make_freeze()).data
        result = service.implement_modification(analysis, approval_status="pending")
        assert result.error.code == "NOT_APPROVED"

    def test_unknown_analysis(self, service, make_freeze):
        analysis = service.analyze_modification_impact(make_freeze()).data
        stray = analysis.model_copy(update={"modification_id": "never-analysed"})
        result = service.implement_modification(stray, approval_status="approved")
        assert result.error.code == "ANALYSIS_NOT_FOUND"

    def test_therapist_change(self, service, session_store):
        request = TherapistChangeRequest(id="mod-t2", subscription_id="sub-1", effective_date=date(2025, 5, 21),
                                         proposed_changes={"new_therapist_id": "T2"})
        analysis = service.analyze_modification_impact(request).data

        result = service.implement_modification(analysis, approval_status="approved")

        assert result.success, result.error
        assert result.data.sessions_updated == 5
        remaining = [s for s in session_store.list_sessions("sub-1") if s.date >= date(2025, 5, 21)]
        assert {s.therapist_id for s in remaining} == {"T2"}
        assert session_store.get_session("sub-1-s005").therapist_id == "T1"

    def test_same_modification_commits_once(self, service, session_store):
        request = TherapistChangeRequest(id="mod-t2", subscription_id="sub-1", effective_date=date(2025, 5, 21),
                                         proposed_changes={"new_therapist_id": "T2"})
        analysis = service.analyze_modification_impact(request).data

        first = service.implement_modification(analysis, approval_status="approved")
        second = service.implement_modification(analysis, approval_status="approved")

        assert first.success, first.error
        assert second.error.code == "ALREADY_IMPLEMENTED"

        undone = service.rollback_modification("mod-t2")
        assert undone.data.sessions_restored == 5
        assert {s.therapist_id for s in session_store.list_sessions("sub-1")} == {"T1"}

    def test_committed_analysis_is_released(self, service, make_freeze):
        """After commit and rollback the old preview cannot be replayed."""
        analysis = service.analyze_modification_impact(make_freeze()).data
        service.implement_modification(analysis, approval_status="approved")
        service.rollback_modification("mod-001")

        replay = service.implement_modification(analysis, approval_status="approved")
        assert replay.error.code == "ANALYSIS_NOT_FOUND"

    def test_pending_analyses_are_bounded(self, service, make_freeze):
        service.impact.MAX_PENDING_ANALYSES = 2
        analyses = [service.analyze_modification_impact(make_freeze(mod_id=f"mod-{n}")).data for n in range(3)]

        oldest = service.implement_modification(analyses[0], approval_status="approved")
        newest = service.implement_modification(analyses[2], approval_status="approved")

        assert oldest.error.code == "ANALYSIS_NOT_FOUND"
        assert newest.success, newest.error

    def test_schedule_change_moves_weekdays(self, service, session_store):
        """Mon/Wed becomes Tue/Thu from 05-26 on."""
        analysis = service.analyze_modification_impact({
            "id": "mod-days", "type": "schedule_change", "subscription_id": "sub-1",
            "effective_date": "2025-05-26", "proposed_changes": {"new_weekdays": [1, 3]},
        }).data

        result = service.implement_modification(analysis, approval_status="approved")

        assert result.success, result.error
        moved = session_store.list_sessions("sub-1")[-4:]
        assert [s.date for s in moved] == [date(2025, 5, 27), date(2025, 5, 29), date(2025, 6, 3), date(2025, 6, 5)]

    def test_program_change_keeps_freeze_extension(self, service, subscription_store, make_freeze):
        service.freeze_subscription(make_freeze())
        analysis = service.analyze_modification_impact({
            "id": "mod-prog", "type": "program_change", "subscription_id": "sub-1",
            "effective_date": "2025-05-21",
            "proposed_changes": {"new_sessions_total": 20, "new_end_date": "2025-07-31"},
        }).data

        result = service.implement_modification(analysis, approval_status="approved")

        assert result.success, result.error
        sub = subscription_store.get("sub-1")
        assert sub.sessions_total == 20
        assert sub.original_end_date == date(2025, 7, 31)
        assert sub.end_date == date(2025, 8, 7)


class TestRollback:

    def test_commit_then_rollback_restores_state(self, service, subscription_store, session_store, make_freeze):
        sessions_before = snapshot(session_store)
        sub_before = subscription_store.get("sub-1")
        events = []
        service.subscribe_to_subscription("sub-1", events.append)

        service.freeze_subscription(make_freeze())
        result = service.rollback_modification("mod-001")

        assert result.success, result.error
        assert result.data.sessions_restored == 2
        assert snapshot(session_store) == sessions_before
        assert subscription_store.get("sub-1") == sub_before
        assert subscription_store.list_audit("sub-1")[0].rolled_back
        assert events[-2].event_type.value == "modification_rolled_back"

    def test_rollback_is_last_in_first_out(self, service, subscription_store, session_store, make_freeze):
        sessions_before = snapshot(session_store)
        sub_before = subscription_store.get("sub-1")
        service.freeze_subscription(make_freeze(mod_id="mod-a"))
        service.freeze_subscription(make_freeze(mod_id="mod-b", start_date=date(2025, 6, 12),
                                                end_date=date(2025, 6, 14)))
        after_both = subscription_store.get("sub-1")
        assert after_both.freeze_days_used == 10

        blocked = service.rollback_modification("mod-a")

        assert blocked.error.code == "LATER_MODIFICATION_EXISTS"
        assert blocked.error.details["later_modifications"] == ["mod-b"]
        assert subscription_store.get("sub-1") == after_both

        assert service.rollback_modification("mod-b").success
        assert service.rollback_modification("mod-a").success
        assert snapshot(session_store) == sessions_before
        assert subscription_store.get("sub-1") == sub_before

    def test_rollback_unknown_modification(self, service):
        result = service.rollback_modification("mod-404")
        assert result.error.code == "ROLLBACK_NOT_FOUND"

    def test_rollback_twice(self, service, make_freeze):
        service.freeze_subscription(make_freeze())
        service.rollback_modification("mod-001")
        assert service.rollback_modification("mod-001").error.code == "ROLLBACK_NOT_FOUND"


class TestConcurrency:

    def test_two_concurrent_freezes(self, service, subscription_store, make_freeze):
        """Exactly one of two simultaneous freezes commits."""
        barrier = threading.Barrier(2)
        results = {}

        def attempt(mod_id):
            request = make_freeze(mod_id=mod_id)
            barrier.wait()
            results[mod_id] = service.freeze_subscription(request)

        threads = [threading.Thread(target=attempt, args=(m,)) for m in ("mod-a", "mod-b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        outcomes = list(results.values())
        assert sum(r.success for r in outcomes) == 1
        loser = next(r for r in outcomes if not r.success)
        assert loser.error.code == "ACTIVE_FREEZE_EXISTS"
        assert loser.error.message_en == "An active freeze already exists for this period"
        assert subscription_store.get("sub-1").freeze_days_used == 7

    def test_commit_lock_reports_in_progress(self, service, make_freeze):
        with service.locks.hold("sub-1", ModificationType.FREEZE):
            freeze = service.freeze_subscription(make_freeze())
            change = service.analyze_modification_impact({
                "id": "mod-t", "type": "therapist_change", "subscription_id": "sub-1",
                "effective_date": "2025-05-21", "proposed_changes": {"new_therapist_id": "T2"},
            })
            other = service.implement_modification(change.data, approval_status="approved")

        assert freeze.error.code == "ACTIVE_FREEZE_EXISTS"
        assert other.error.code == "MODIFICATION_IN_PROGRESS"
        assert not service.locks.is_locked("sub-1")


    def test_lock_conflict_depends_on_window_overlap(self, service, make_freeze):
        with service.locks.hold("sub-1", ModificationType.FREEZE, (date(2025, 6, 1), date(2025, 6, 7))):
            same_days = service.freeze_subscription(make_freeze(mod_id="mod-x"))
            other_days = service.freeze_subscription(make_freeze(mod_id="mod-y", start_date=date(2025, 6, 20),
                                                                 end_date=date(2025, 6, 22)))

        assert same_days.error.code == "ACTIVE_FREEZE_EXISTS"
        assert other_days.error.code == "MODIFICATION_IN_PROGRESS"



class TestInfrastructureFailures:

    def test_subscription_write_failure_restores_sessions(self, service, subscription_store, session_store,
                                                          make_freeze):
        before = snapshot(session_store)
        subscription_store.fail_on_write = ConnectionError("primary unreachable")

        result = service.freeze_subscription(make_freeze())

        assert not result.success
        assert result.error.code == "STORE_UNAVAILABLE"
        assert result.error.retryable
        assert snapshot(session_store) == before
        assert subscription_store.get("sub-1").freeze_days_used == 0

    def test_session_store_down(self, service, session_store, make_freeze):
        session_store.available = False
        result = service.analyze_modification_impact(make_freeze())
        assert result.error.code == "STORE_UNAVAILABLE"


class TestBulk:

    @pytest.fixture
    def clinic(self, subscription, demo, calendar, settings):
        subscriptions = [subscription] + [
            subscription.model_copy(update={"id": f"sub-{i}", "student_id": f"stu-{i}"}) for i in range(2, 19)
        ]
        return SubscriptionModificationService(
            InMemorySubscriptionStore(subscriptions), InMemorySessionStore(demo["sessions"], demo["therapists"]),
            calendar=calendar, settings=settings
        )

    @pytest.fixture
    def template(self):
        return {
            "type": "freeze",
            "effective_date": "2025-06-01",
            "proposed_changes": {"start_date": "2025-06-01", "end_date": "2025-06-07",
                                 "reason": "Clinic maintenance week"},
        }

    def test_twenty_enrollments_two_malformed(self, clinic, template):
        ids = [f"sub-{i}" for i in range(1, 19)] + ["", "bad id!"]

        result = clinic.analyze_bulk_impact(ids, template)

        assert result.success
        assert result.data.aggregate.total_enrollments == 20
        assert len(result.data.successful_analyses) == 18
        assert len(result.data.failed_analyses) == 2

    def test_all_failed(self, clinic, template):
        result = clinic.analyze_bulk_impact(["", "nope!"], template)

        assert not result.success
        assert result.error.code == "BULK_ALL_FAILED"
        assert len(result.data.failed_analyses) == 2


class TestFacadeOperations:

    def test_validate_freeze_request(self, service, make_freeze):
        result = service.validate_freeze_request(make_freeze())
        assert result.success
        assert result.data.valid

    def test_validate_rejects_other_types(self, service):
        result = service.validate_freeze_request({
            "id": "m", "type": "therapist_change", "subscription_id": "sub-1",
            "effective_date": "2025-06-01", "proposed_changes": {"new_therapist_id": "T2"},
        })
        assert result.error.code == "MALFORMED_REQUEST"

    def test_calculate_new_end_date(self, service):
        result = service.calculate_new_end_date("sub-1", 7, {"include_weekends": True})
        assert result.data.new_end_date == date(2025, 7, 7)

    def test_calculate_unknown_subscription(self, service):
        result = service.calculate_new_end_date("sub-404", 7)
        assert result.error.code == "SUBSCRIPTION_NOT_FOUND"
        assert result.error.message_ar

    def test_reschedule_sessions_for_freeze(self, service):
        result = service.reschedule_sessions_for_freeze({
            "subscription_id": "sub-1", "freeze_start_date": "2025-06-01", "freeze_end_date": "2025-06-07",
        })
        assert result.data.sessions_rescheduled == 2

    def test_billing_strategy_validated(self, service):
        assert service.adjust_billing_cycle("sub-1", 7, "credit").data.credit_issued == 280.0
        assert service.adjust_billing_cycle("sub-1", 7, "barter").error.code == "INVALID_VALUE"

    def test_compare_scenarios_requires_input(self, service):
        assert service.compare_scenarios("sub-1", []).error.code == "NO_SCENARIOS"

    def test_subscribe_returns_unsubscribe(self, service):
        result = service.subscribe_to_subscription("sub-1", lambda e: None)
        assert service.notifier.subscriber_count("sub-1") == 1
        result.data()
        assert service.notifier.subscriber_count("sub-1") == 0


class TestResume:

    def test_resume_frozen_subscription(self, service, subscription_store, session_store, make_freeze, today):
        service.freeze_subscription(make_freeze(start_date=today, end_date=date(2025, 5, 22)))

        result = service.resume_subscription("sub-1")

        assert result.success, result.error
        sub = subscription_store.get("sub-1")
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.active_freezes() == []
        assert sub.freeze_days_used == 3

    def test_resume_active_subscription(self, service):
        assert service.resume_subscription("sub-1").error.code == "NOT_FROZEN"

    def test_freeze_not_yet_started_stays_booked(self, service, subscription_store, make_freeze):
        """Resuming early would free the window for a second charge."""
        service.freeze_subscription(make_freeze(end_date=date(2025, 6, 3)))

        assert service.resume_subscription("sub-1").error.code == "NOT_FROZEN"
        again = service.freeze_subscription(make_freeze(mod_id="mod-002", end_date=date(2025, 6, 3)))

        assert again.error.code == "ACTIVE_FREEZE_EXISTS"
        sub = subscription_store.get("sub-1")
        assert sub.freeze_days_used == 3
        assert sub.end_date == date(2025, 7, 3)
