from __future__ import annotations

from datetime import date, datetime, time, timedelta
from pathlib import Path
import traceback

from parking_schedule import SchedulingService, SlotYamlRepository


def main() -> int:
    print("[INFO] Parking Schedule Quick Check")
    print("[INFO] Creating hourly slots and binding a reservation...")

    repo = SlotYamlRepository("data")
    service = SchedulingService(repo)
    space_id = "quickcheck-space"
    day = date.today() + timedelta(days=1)

    repo.set_hourly_rate(space_id, "10.00")
    batch = service.create_hourly_slots(space_id, day, time(9, 0), time(12, 30))
    print(f"[OK] Hourly slots created: {len(batch.created)}, failed: {len(batch.failed)}")

    available = service.list_slots(space_id, day, available_only=True)
    if not available:
        print("[INFO] No available slot left for this day; nothing to reserve.")
        return 0

    binding = service.reserve_slot(available[0].slot_id)
    print(
        "[OK] Reserved slot: "
        f"{binding.slot.day.isoformat()} "
        f"{binding.slot.start_time.isoformat(timespec='minutes')}"
        f"~{binding.slot.end_time.isoformat(timespec='minutes')}, "
        f"fare {binding.total_fare} ({binding.hours_billed}h)"
    )

    service.release_slot(binding.slot.slot_id)
    summary = service.summarize_slots(space_id, day)
    print(f"[OK] Slots: {summary.total} total, {summary.available} available, {summary.reserved} reserved")
    print(f"[OK] Slots YAML: {Path('data/slots.yaml').resolve()}")
    print(f"[OK] Event Log YAML: {Path('data/schedule_events.yaml').resolve()}")
    print(f"[DONE] Quick check completed successfully at {datetime.now().isoformat(timespec='seconds')}.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
