import tempfile
import threading
import unittest
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path

from parking_schedule import (
    HourlyRateNotFoundError,
    InvalidIntervalError,
    MixedDaySelectionError,
    PastDateError,
    SchedulingService,
    SlotAlreadyAvailableError,
    SlotConflictError,
    SlotNotFoundError,
    SlotReservedError,
    SlotUnavailableError,
    SlotYamlRepository,
)
from parking_schedule.conflicts import has_time_overlap

NOW = datetime(2026, 2, 24, 9, 0)
TODAY = date(2026, 2, 24)
DAY = date(2026, 2, 25)


class ServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.repo = SlotYamlRepository(Path(self._temp_dir.name) / "data")
        self.repo.set_hourly_rate("space-1", "10.00")
        self.service = SchedulingService(self.repo, clock=lambda: NOW)

    def tearDown(self) -> None:
        self._temp_dir.cleanup()


class TestCreateSlot(ServiceTestCase):
    def test_create_then_list_returns_single_available_slot(self) -> None:
        created = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))

        listed = self.service.list_slots("space-1", DAY)

        self.assertEqual(listed, [created])
        self.assertTrue(listed[0].available)
        self.assertEqual((listed[0].start_time, listed[0].end_time), (time(9, 0), time(10, 0)))
        self.assertEqual(listed[0].created_at, NOW)
        self.assertEqual(listed[0].updated_at, NOW)

    def test_create_today_is_allowed(self) -> None:
        created = self.service.create_slot("space-1", TODAY, time(18, 0), time(19, 0))
        self.assertEqual(created.day, TODAY)

    def test_create_in_the_past_is_rejected(self) -> None:
        with self.assertRaises(PastDateError):
            self.service.create_slot("space-1", date(2026, 2, 23), time(9, 0), time(10, 0))

    def test_invalid_interval_is_rejected_before_storage(self) -> None:
        with self.assertRaises(InvalidIntervalError):
            self.service.create_slot("space-1", DAY, time(10, 0), time(10, 0))
        self.assertEqual(self.repo.get_events(), [])

    def test_conflict_carries_every_overlapping_slot(self) -> None:
        first = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        second = self.service.create_slot("space-1", DAY, time(10, 0), time(11, 0))

        with self.assertRaises(SlotConflictError) as context:
            self.service.create_slot("space-1", DAY, time(9, 30), time(10, 30))

        self.assertCountEqual(context.exception.conflicting, [first, second])
        self.assertEqual(len(self.service.list_slots("space-1", DAY)), 2)

    def test_touching_slots_are_allowed(self) -> None:
        self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.create_slot("space-1", DAY, time(10, 0), time(11, 0))

        self.assertEqual(len(self.service.list_slots("space-1", DAY)), 2)

    def test_same_interval_on_other_space_is_allowed(self) -> None:
        self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.create_slot("space-2", DAY, time(9, 0), time(10, 0))

        self.assertEqual(len(self.service.list_slots("space-2")), 1)

    def test_blank_space_id_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.service.create_slot("  ", DAY, time(9, 0), time(10, 0))

    def test_concurrent_overlapping_creates_let_exactly_one_win(self) -> None:
        barrier = threading.Barrier(2)
        results: list[str] = []
        lock = threading.Lock()

        def attempt(start: time, end: time) -> None:
            barrier.wait()
            try:
                self.service.create_slot("space-1", DAY, start, end)
                outcome = "created"
            except SlotConflictError:
                outcome = "conflict"
            with lock:
                results.append(outcome)

        threads = [
            threading.Thread(target=attempt, args=(time(9, 0), time(11, 0))),
            threading.Thread(target=attempt, args=(time(10, 0), time(12, 0))),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertCountEqual(results, ["created", "conflict"])
        stored = self.repo.fetch_by_parking_and_day("space-1", DAY)
        self.assertEqual(len(stored), 1)

    def test_concurrent_creates_across_separate_services_still_serialize(self) -> None:
        other = SchedulingService(self.repo, clock=lambda: NOW)
        barrier = threading.Barrier(2)
        results: list[str] = []
        lock = threading.Lock()

        def attempt(service: SchedulingService) -> None:
            barrier.wait()
            try:
                service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
                outcome = "created"
            except SlotConflictError:
                outcome = "conflict"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt, args=(service,)) for service in (self.service, other)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertCountEqual(results, ["created", "conflict"])
        stored = self.repo.fetch_by_parking_and_day("space-1", DAY)
        self.assertEqual(len(stored), 1)

    def test_repositories_sharing_a_directory_keep_every_acknowledged_create(self) -> None:
        data_dir = Path(self._temp_dir.name) / "data"
        services = [
            SchedulingService(SlotYamlRepository(data_dir), clock=lambda: NOW),
            SchedulingService(SlotYamlRepository(data_dir), clock=lambda: NOW),
        ]
        acknowledged: list[str] = []
        lock = threading.Lock()

        for round_index in range(10):
            barrier = threading.Barrier(2)

            def attempt(service: SchedulingService, day: date) -> None:
                barrier.wait()
                created = service.create_slot("space-1", day, time(9, 0), time(10, 0))
                with lock:
                    acknowledged.append(created.slot_id)

            first_day = DAY + timedelta(days=2 * round_index)
            threads = [
                threading.Thread(target=attempt, args=(services[0], first_day)),
                threading.Thread(target=attempt, args=(services[1], first_day + timedelta(days=1))),
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertEqual(len(acknowledged), 20)
        stored = {slot.slot_id for slot in SlotYamlRepository(data_dir).fetch_all()}
        self.assertEqual(stored, set(acknowledged))
        self.assertEqual(list(data_dir.glob("*.tmp")), [])

    def test_repositories_sharing_a_directory_refuse_overlapping_creates(self) -> None:
        data_dir = Path(self._temp_dir.name) / "data"
        services = [
            SchedulingService(SlotYamlRepository(data_dir), clock=lambda: NOW),
            SchedulingService(SlotYamlRepository(data_dir), clock=lambda: NOW),
        ]
        barrier = threading.Barrier(2)
        results: list[str] = []
        lock = threading.Lock()

        def attempt(service: SchedulingService, start: time, end: time) -> None:
            barrier.wait()
            try:
                service.create_slot("space-1", DAY, start, end)
                outcome = "created"
            except SlotConflictError:
                outcome = "conflict"
            with lock:
                results.append(outcome)

        threads = [
            threading.Thread(target=attempt, args=(services[0], time(9, 0), time(11, 0))),
            threading.Thread(target=attempt, args=(services[1], time(10, 0), time(12, 0))),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertCountEqual(results, ["created", "conflict"])
        self.assertEqual(len(self.repo.fetch_by_parking_and_day("space-1", DAY)), 1)


class TestHourlySlots(ServiceTestCase):
    def test_range_is_split_into_hours_with_clamped_tail(self) -> None:
        batch = self.service.create_hourly_slots("space-1", DAY, time(9, 0), time(11, 30))

        self.assertEqual(
            [(slot.start_time, slot.end_time) for slot in batch.created],
            [(time(9, 0), time(10, 0)), (time(10, 0), time(11, 0)), (time(11, 0), time(11, 30))],
        )
        self.assertEqual(batch.failed, [])

    def test_conflicting_pieces_are_reported_and_others_kept(self) -> None:
        self.service.create_slot("space-1", DAY, time(10, 0), time(10, 30))

        batch = self.service.create_hourly_slots("space-1", DAY, time(9, 0), time(12, 0))

        self.assertEqual(len(batch.created), 2)
        self.assertEqual(len(batch.failed), 1)
        self.assertEqual(batch.failed[0].kind, "Conflict")
        self.assertEqual(batch.failed[0].start_time, time(10, 0))
        self.assertEqual(len(self.service.list_slots("space-1", DAY)), 3)

    def test_past_range_is_rejected_up_front(self) -> None:
        with self.assertRaises(PastDateError):
            self.service.create_hourly_slots("space-1", date(2026, 2, 1), time(9, 0), time(12, 0))


class TestUpdateSlot(ServiceTestCase):
    def test_update_own_interval_does_not_conflict_with_itself(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))

        updated = self.service.update_slot(slot.slot_id, DAY, time(9, 30), time(10, 30))

        self.assertEqual((updated.start_time, updated.end_time), (time(9, 30), time(10, 30)))
        self.assertEqual(updated.created_at, slot.created_at)
        self.assertTrue(updated.available)

    def test_update_can_move_slot_to_another_day(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))

        updated = self.service.update_slot(slot.slot_id, date(2026, 2, 26), time(9, 0), time(10, 0))

        self.assertEqual(updated.day, date(2026, 2, 26))
        self.assertEqual(self.service.list_slots("space-1", DAY), [])

    def test_rejected_update_leaves_slot_unchanged(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.create_slot("space-1", DAY, time(11, 0), time(12, 0))

        with self.assertRaises(SlotConflictError):
            self.service.update_slot(slot.slot_id, DAY, time(9, 0), time(11, 30))

        self.assertEqual(self.service.get_slot(slot.slot_id), slot)

    def test_update_reserved_slot_is_refused(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.reserve_slot(slot.slot_id)

        with self.assertRaises(SlotReservedError):
            self.service.update_slot(slot.slot_id, DAY, time(9, 0), time(9, 30))

        self.assertEqual(self.service.get_slot(slot.slot_id).end_time, time(10, 0))

    def test_update_unknown_or_invalid(self) -> None:
        with self.assertRaises(SlotNotFoundError):
            self.service.update_slot("missing", DAY, time(9, 0), time(10, 0))
        with self.assertRaises(InvalidIntervalError):
            self.service.update_slot("missing", DAY, time(10, 0), time(9, 0))

    def test_day_changing_update_races_create_on_target_day(self) -> None:
        target_day = date(2026, 2, 26)
        for _ in range(5):
            moving = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
            barrier = threading.Barrier(2)
            results: dict[str, str] = {}
            lock = threading.Lock()

            def move() -> None:
                barrier.wait()
                try:
                    self.service.update_slot(moving.slot_id, target_day, time(13, 0), time(15, 0))
                    outcome = "moved"
                except SlotConflictError:
                    outcome = "conflict"
                with lock:
                    results["update"] = outcome

            def create() -> None:
                barrier.wait()
                try:
                    self.service.create_slot("space-1", target_day, time(14, 0), time(16, 0))
                    outcome = "created"
                except SlotConflictError:
                    outcome = "conflict"
                with lock:
                    results["create"] = outcome

            threads = [threading.Thread(target=move), threading.Thread(target=create)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            self.assertEqual(sorted(results.values()).count("conflict"), 1)
            target = self.repo.fetch_by_parking_and_day("space-1", target_day)
            self.assertEqual(len(target), 1)
            if results["update"] == "moved":
                self.assertEqual(target[0].slot_id, moving.slot_id)
                self.assertEqual(self.repo.fetch_by_parking_and_day("space-1", DAY), [])
            else:
                self.assertEqual(self.service.get_slot(moving.slot_id).day, DAY)

            for slot in self.repo.fetch_all():
                self.service.delete_slot(slot.slot_id)


class TestDeleteSlot(ServiceTestCase):
    def test_delete_available_slot(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))

        self.service.delete_slot(slot.slot_id)

        self.assertEqual(self.service.list_slots("space-1"), [])

    def test_delete_reserved_slot_is_refused(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.reserve_slot(slot.slot_id)

        with self.assertRaises(SlotReservedError):
            self.service.delete_slot(slot.slot_id)
        self.assertEqual(len(self.service.list_slots("space-1")), 1)

    def test_delete_unknown_slot(self) -> None:
        with self.assertRaises(SlotNotFoundError):
            self.service.delete_slot("missing")


class TestReserveAndRelease(ServiceTestCase):
    def test_reserve_returns_ceiling_priced_binding(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 31))

        binding = self.service.reserve_slot(slot.slot_id)

        self.assertEqual(binding.hours_billed, 2)
        self.assertEqual(binding.hourly_rate, Decimal("10.00"))
        self.assertEqual(binding.total_fare, Decimal("20.00"))
        self.assertFalse(binding.slot.available)
        self.assertFalse(self.service.get_slot(slot.slot_id).available)

    def test_second_reserve_fails_and_slot_stays_reserved(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.reserve_slot(slot.slot_id)

        with self.assertRaises(SlotUnavailableError):
            self.service.reserve_slot(slot.slot_id)

        self.assertFalse(self.service.get_slot(slot.slot_id).available)

    def test_release_then_reserve_again(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.reserve_slot(slot.slot_id)

        released = self.service.release_slot(slot.slot_id)
        self.assertTrue(released.available)

        self.service.reserve_slot(slot.slot_id)
        self.assertFalse(self.service.get_slot(slot.slot_id).available)

    def test_double_release_is_signalled(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.reserve_slot(slot.slot_id)
        self.service.release_slot(slot.slot_id)

        with self.assertRaises(SlotAlreadyAvailableError):
            self.service.release_slot(slot.slot_id)

    def test_unknown_slot(self) -> None:
        with self.assertRaises(SlotNotFoundError):
            self.service.reserve_slot("missing")
        with self.assertRaises(SlotNotFoundError):
            self.service.release_slot("missing")

    def test_missing_rate_leaves_slot_available(self) -> None:
        slot = self.service.create_slot("space-9", DAY, time(9, 0), time(10, 0))

        with self.assertRaises(HourlyRateNotFoundError):
            self.service.reserve_slot(slot.slot_id)

        self.assertTrue(self.service.get_slot(slot.slot_id).available)

    def test_injected_rate_lookup_is_used(self) -> None:
        service = SchedulingService(self.repo, rate_lookup=lambda space_id: Decimal("3.25"), clock=lambda: NOW)
        slot = service.create_slot("space-9", DAY, time(9, 0), time(12, 0))

        self.assertEqual(service.reserve_slot(slot.slot_id).total_fare, Decimal("9.75"))

    def test_non_finite_rate_is_refused_before_binding(self) -> None:
        service = SchedulingService(self.repo, rate_lookup=lambda space_id: Decimal("Infinity"), clock=lambda: NOW)
        slot = service.create_slot("space-9", DAY, time(9, 0), time(10, 0))

        with self.assertRaises(ValueError):
            service.reserve_slot(slot.slot_id)

        self.assertTrue(service.get_slot(slot.slot_id).available)

    def test_transitions_are_logged(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.reserve_slot(slot.slot_id)
        self.service.release_slot(slot.slot_id)

        event_types = [event["event_type"] for event in self.repo.get_events()]
        self.assertIn("SLOT_RESERVED", event_types)
        self.assertIn("SLOT_RELEASED", event_types)

    def test_concurrent_reserves_bind_once(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        barrier = threading.Barrier(3)
        results: list[str] = []
        lock = threading.Lock()

        def attempt() -> None:
            barrier.wait()
            try:
                self.service.reserve_slot(slot.slot_id)
                outcome = "reserved"
            except SlotUnavailableError:
                outcome = "unavailable"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), ["reserved", "unavailable", "unavailable"])


class TestReserveSlots(ServiceTestCase):
    def test_multiple_slots_sum_per_slot_ceilings(self) -> None:
        first = self.service.create_slot("space-1", DAY, time(9, 0), time(9, 30))
        second = self.service.create_slot("space-1", DAY, time(10, 0), time(11, 15))

        result = self.service.reserve_slots([second.slot_id, first.slot_id])

        self.assertEqual(result.hours_billed, 3)
        self.assertEqual(result.total_fare, Decimal("30.00"))
        self.assertEqual([binding.slot.slot_id for binding in result.bindings], [first.slot_id, second.slot_id])
        self.assertEqual(self.service.list_slots("space-1", DAY, available_only=True), [])

    def test_one_unavailable_slot_aborts_the_whole_selection(self) -> None:
        first = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        second = self.service.create_slot("space-1", DAY, time(10, 0), time(11, 0))
        self.service.reserve_slot(second.slot_id)

        with self.assertRaises(SlotUnavailableError):
            self.service.reserve_slots([first.slot_id, second.slot_id])

        self.assertTrue(self.service.get_slot(first.slot_id).available)

    def test_slots_of_different_days_are_refused(self) -> None:
        first = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        second = self.service.create_slot("space-1", date(2026, 2, 26), time(9, 0), time(10, 0))

        with self.assertRaises(MixedDaySelectionError):
            self.service.reserve_slots([first.slot_id, second.slot_id])

        self.assertTrue(self.service.get_slot(first.slot_id).available)

    def test_empty_or_duplicate_selection_is_refused(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        with self.assertRaises(ValueError):
            self.service.reserve_slots([])
        with self.assertRaises(ValueError):
            self.service.reserve_slots([slot.slot_id, slot.slot_id])


class TestListAndSummary(ServiceTestCase):
    def test_list_orders_by_start_and_filters_available(self) -> None:
        late = self.service.create_slot("space-1", DAY, time(14, 0), time(15, 0))
        early = self.service.create_slot("space-1", DAY, time(8, 0), time(9, 0))
        middle = self.service.create_slot("space-1", DAY, time(11, 0), time(12, 0))
        self.service.reserve_slot(middle.slot_id)

        self.assertEqual(
            [slot.slot_id for slot in self.service.list_slots("space-1", DAY)],
            [early.slot_id, middle.slot_id, late.slot_id],
        )
        self.assertEqual(
            [slot.slot_id for slot in self.service.list_slots("space-1", DAY, available_only=True)],
            [early.slot_id, late.slot_id],
        )

    def test_list_of_unknown_space_is_empty(self) -> None:
        self.assertEqual(self.service.list_slots("nowhere"), [])

    def test_summary_counts(self) -> None:
        slot = self.service.create_slot("space-1", DAY, time(9, 0), time(10, 0))
        self.service.create_slot("space-1", DAY, time(10, 0), time(11, 0))
        self.service.reserve_slot(slot.slot_id)

        summary = self.service.summarize_slots("space-1", DAY)

        self.assertEqual((summary.total, summary.available, summary.reserved), (2, 1, 1))

    def test_stored_slots_never_overlap_after_mixed_operations(self) -> None:
        self.service.create_hourly_slots("space-1", DAY, time(8, 0), time(12, 0))
        for slot in self.service.list_slots("space-1", DAY)[:2]:
            try:
                self.service.update_slot(slot.slot_id, DAY, time(8, 30), time(10, 30))
            except SlotConflictError:
                pass

        stored = self.service.list_slots("space-1", DAY)
        for index, first in enumerate(stored):
            for second in stored[index + 1:]:
                self.assertFalse(has_time_overlap(first.start_time, first.end_time, second.start_time, second.end_time))


if __name__ == "__main__":
    unittest.main()
