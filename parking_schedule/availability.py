from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from enum import Enum

from .errors import SlotAlreadyAvailableError, SlotUnavailableError
from .yaml_store import SlotRecord


class SlotState(str, Enum):
    AVAILABLE = "Available"
    RESERVED = "Reserved"


def state_of(slot: SlotRecord) -> SlotState:
    return SlotState.AVAILABLE if slot.available else SlotState.RESERVED


def reserve(slot: SlotRecord, now: datetime) -> SlotRecord:
    """Available -> Reserved. A second reserve without a release is refused."""
    if not slot.available:
        raise SlotUnavailableError(f"Slot {slot.slot_id} is already reserved.")
    return replace(slot, available=False, updated_at=now)


def release(slot: SlotRecord, now: datetime) -> SlotRecord:
    """Reserved -> Available. Releasing an available slot signals a double release."""
    if slot.available:
        raise SlotAlreadyAvailableError(f"Slot {slot.slot_id} is already available.")
    return replace(slot, available=True, updated_at=now)
