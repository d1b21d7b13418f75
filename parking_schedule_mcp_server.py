from __future__ import annotations

from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from parking_schedule import SchedulingService, SlotYamlRepository, parse_day, parse_time_of_day

mcp = FastMCP(
    "Parking Schedule MCP Server",
    instructions="Manage parking-space availability slots and bind reservations to them.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
REPOSITORY = SlotYamlRepository(DATA_DIR)
SERVICE = SchedulingService(REPOSITORY)


@mcp.resource("schedule://events")
async def list_events() -> list[dict[str, Any]]:
    """Return the schedule event trail."""
    return REPOSITORY.get_events()


@mcp.tool()
def list_slots(space_id: str, day: str | None = None, available_only: bool = False) -> list[dict[str, Any]]:
    """Return slots of a parking space ordered by day and start time."""
    slots = SERVICE.list_slots(space_id, day=parse_day(day) if day else None, available_only=available_only)
    return [slot.to_dict() for slot in slots]


@mcp.tool()
def create_slot(space_id: str, day: str, start_time: str, end_time: str) -> dict[str, Any]:
    """Offer a new slot; times accept HH:MM or HH:MM:SS."""
    created = SERVICE.create_slot(space_id, parse_day(day), parse_time_of_day(start_time), parse_time_of_day(end_time))
    return created.to_dict()


@mcp.tool()
def update_slot(slot_id: str, day: str, start_time: str, end_time: str) -> dict[str, Any]:
    """Move or resize an available slot; reserved slots must be released first."""
    updated = SERVICE.update_slot(slot_id, parse_day(day), parse_time_of_day(start_time), parse_time_of_day(end_time))
    return updated.to_dict()


@mcp.tool()
def delete_slot(slot_id: str) -> dict[str, Any]:
    """Withdraw an available slot and return the removed record."""
    return SERVICE.delete_slot(slot_id).to_dict()


@mcp.tool()
def reserve_slot(slot_id: str) -> dict[str, Any]:
    """Bind a reservation to an available slot and return the billed fare."""
    return SERVICE.reserve_slot(slot_id).to_dict()


@mcp.tool()
def release_slot(slot_id: str) -> dict[str, Any]:
    """Release a reserved slot after its reservation was cancelled."""
    return SERVICE.release_slot(slot_id).to_dict()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
