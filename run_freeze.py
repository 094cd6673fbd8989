"""
Main Execution Script for the Therapy Freeze Scheduler.
Runs the sub-1 freeze scenario end to end, then a bulk preview over a
generated clinic, and exports the outcome for inspection.
"""

import os
import sys
import logging
from datetime import date, timedelta
import json

# Add current directory to path so imports work
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from generators.data_factory import DataGenerator, load_records
from scheduler.calendar import HolidayCalendar
from scheduler.config import SchedulerSettings
from scheduler.notifier import InMemoryDispatcher
from scheduler.service import SubscriptionModificationService
from scheduler.stores import InMemorySessionStore, InMemorySubscriptionStore
from models import BulkModificationTemplate, FreezeRequest, ScheduledSession, Subscription

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("Main")

# --- CONFIGURATION ---
CACHE_FILENAME = "clinic_data.json"
USE_CACHE = True  # Set to False to force a fresh generated clinic
DEMO_TODAY = date(2025, 5, 20)
# ---------------------


def save_debug_data(data: dict, filename: str):
    """Helper to save generated data so runs are repeatable."""
    serializable = {}
    for key, val in data.items():
        if isinstance(val, list):
            serializable[key] = [
                item.model_dump(mode='json') if hasattr(item, "model_dump")
                else item.isoformat() if isinstance(item, date) else item
                for item in val
            ]

    with open(filename, 'w') as f:
        json.dump(serializable, f, indent=2)
    logger.info(f"💾 Saved clinic data to {filename}")


def load_cached_data(filename: str):
    """
    Helper to load JSON data and reconstruct Pydantic objects.
    """
    try:
        with open(filename, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        logger.warning(f"⚠️ Cache file {filename} not found or invalid. Falling back to Generator.")
        return None

    logger.info(f"📂 Loading cached data from {filename}...")
    dataset = {
        "subscriptions": load_records(data.get('subscriptions', []), Subscription),
        "sessions": load_records(data.get('sessions', []), ScheduledSession),
        "therapists": list(data.get('therapists', [])),
        "holidays": [date.fromisoformat(d) for d in data.get('holidays', [])],
    }
    logger.info(f"✅ Cache Loaded: {len(dataset['subscriptions'])} subscriptions, "
                f"{len(dataset['sessions'])} sessions.")
    return dataset


def build_service(dataset: dict, today: date, settings: SchedulerSettings):
    calendar = HolidayCalendar.fixed(today, dataset["holidays"], settings.weekend_days)
    service = SubscriptionModificationService(
        InMemorySubscriptionStore(dataset["subscriptions"], settings.store_timeout_seconds),
        InMemorySessionStore(dataset["sessions"], dataset["therapists"], settings.store_timeout_seconds),
        calendar=calendar,
        settings=settings,
        dispatcher=InMemoryDispatcher()
    )
    return service


def export_report(freeze_outcome: dict, bulk_outcome: dict, filename="freeze_report.json"):
    """
    Serializes both runs into a JSON report.
    """
    logger.info(f"💾 Exporting report to {filename}...")
    data = {"freeze": freeze_outcome, "bulk": bulk_outcome}
    with open(filename, 'w') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    logger.info("✅ Report exported.")


def run_demo_freeze(settings: SchedulerSettings) -> dict:
    """Phase 1: the reference freeze on sub-1."""
    logger.info("--- Phase 1: Reference Freeze (sub-1) ---")
    dataset = DataGenerator(seed=7).demo_scenario()
    service = build_service(dataset, DEMO_TODAY, settings)

    events = []
    service.subscribe_to_subscription("sub-1", lambda e: events.append(e.event_type.value))

    request = FreezeRequest(
        id="mod-demo-001",
        subscription_id="sub-1",
        requested_by="parent-1",
        proposed_changes={
            "start_date": date(2025, 6, 1),
            "end_date": date(2025, 6, 7),
            "reason": "Family travel during school break",
        }
    )

    verdict = service.validate_freeze_request(request)
    for warning in verdict.data.warnings:
        logger.info(f"⚠️ {warning.message_en}")

    outcome = service.freeze_subscription(request, implemented_by="coordinator-1")
    if not outcome.success:
        logger.error(f"❌ Freeze failed: {outcome.error.message_en}")
        return {"success": False, "error": outcome.error.model_dump(mode='json')}

    record = outcome.data
    logger.info(f"🧊 Freeze committed, new end date {record.new_end_date} "
                f"({record.sessions_updated} moved, {len(record.conflicts_detected)} conflicts)")
    logger.info(f"📣 Events: {events}")

    return {
        "success": True,
        "implementation": record.model_dump(mode='json'),
        "events": events,
    }


def run_bulk_preview(settings: SchedulerSettings) -> dict:
    """Phase 2: the same one-week freeze previewed across a generated clinic."""
    logger.info("\n--- Phase 2: Bulk Freeze Preview ---")
    start_date = DEMO_TODAY

    dataset = load_cached_data(CACHE_FILENAME) if USE_CACHE else None
    if not dataset:
        dataset = DataGenerator(seed=42, start_date=start_date).generate_dataset(subscription_count=20)
        save_debug_data(dataset, CACHE_FILENAME)

    service = build_service(dataset, start_date, settings)
    freeze_start = start_date + timedelta(days=10)
    template = BulkModificationTemplate(
        type="freeze",
        effective_date=freeze_start,
        proposed_changes={
            "start_date": freeze_start.isoformat(),
            "end_date": (freeze_start + timedelta(days=6)).isoformat(),
            "reason": "Clinic-wide maintenance week",
        }
    )
    ids = [s.id for s in dataset["subscriptions"]] + ["", "bad id!"]
    outcome = service.analyze_bulk_impact(ids, template)
    return outcome.data.model_dump(mode='json') if outcome.data else {}


def main():
    logger.info("🚀 Starting Therapy Freeze Scheduler run...")
    settings = SchedulerSettings.from_env()

    freeze_outcome = run_demo_freeze(settings)
    bulk_outcome = run_bulk_preview(settings)

    # --- PHASE 3: REPORTING ---
    aggregate = bulk_outcome.get("aggregate", {})

    print("\n" + "=" * 50)
    print("📊 FINAL EXECUTION REPORT")
    print("=" * 50)
    if freeze_outcome.get("success"):
        impl = freeze_outcome["implementation"]
        print(f"Reference freeze:      new end {impl['new_end_date']}, "
              f"{impl['sessions_updated']} session(s) moved")
    print(f"Bulk enrollments:      {aggregate.get('total_enrollments', 0)}")
    print(f"  - Analysed:          {aggregate.get('successful', 0)}")
    print(f"  - Failed:            {aggregate.get('failed', 0)}")
    print(f"Affected sessions:     {aggregate.get('total_affected_sessions', 0)}")
    print(f"Overall severity:      {aggregate.get('overall_severity', 'low')}")

    failures = bulk_outcome.get("failed_analyses", [])
    if failures:
        print("\n🔍 FAILURE ANALYSIS")
        for fail in failures:
            print(f"❌ [{fail['code']}] {fail['subscription_id']!r}")
            print(f"   Reason: {fail['message_en']}")

    # --- PHASE 4: EXPORT ---
    export_report(freeze_outcome, bulk_outcome)

    print("\n✅ Run Complete.")


if __name__ == "__main__":
    main()
