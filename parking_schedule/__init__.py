from .conflicts import ConflictCheck, SlotInterval, can_schedule, find_conflicts, has_time_overlap
from .errors import (
	HourlyRateNotFoundError,
	InvalidIntervalError,
	MixedDaySelectionError,
	PastDateError,
	SchedulingError,
	SlotAlreadyAvailableError,
	SlotConflictError,
	SlotNotFoundError,
	SlotReservedError,
	SlotStorageError,
	SlotUnavailableError,
)
from .pricing import billed_hours, price
from .service import HourlySlotBatch, MultiSlotBinding, SchedulingService, SlotBinding, SlotSummary
from .time_parsing import ParsedSlotRequest, parse_day, parse_slot_request, parse_time_of_day
from .yaml_store import SlotRecord, SlotYamlRepository

__all__ = [
	"ConflictCheck",
	"SlotInterval",
	"can_schedule",
	"find_conflicts",
	"has_time_overlap",
	"HourlyRateNotFoundError",
	"InvalidIntervalError",
	"MixedDaySelectionError",
	"PastDateError",
	"SchedulingError",
	"SlotAlreadyAvailableError",
	"SlotConflictError",
	"SlotNotFoundError",
	"SlotReservedError",
	"SlotStorageError",
	"SlotUnavailableError",
	"billed_hours",
	"price",
	"HourlySlotBatch",
	"MultiSlotBinding",
	"SchedulingService",
	"SlotBinding",
	"SlotSummary",
	"ParsedSlotRequest",
	"parse_day",
	"parse_slot_request",
	"parse_time_of_day",
	"SlotRecord",
	"SlotYamlRepository",
]
