from __future__ import annotations

from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from . import SchedulingService, SlotYamlRepository
from .errors import SchedulingError, SlotConflictError
from .time_parsing import parse_day, parse_slot_request, parse_time_of_day

NOT_FOUND_KINDS = {"NotFound", "RateNotFound"}
STATE_CONFLICT_KINDS = {"Conflict", "SlotReserved", "SlotUnavailable", "SlotAlreadyAvailable"}
TRUE_VALUES = {"1", "true", "yes", "on"}


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
) -> Flask:
    app = Flask(__name__)
    repository = SlotYamlRepository(data_dir)
    clock: Callable[[], datetime] = now_provider or datetime.now
    service = SchedulingService(repository, clock=clock)
    app.config["SCHEDULING_SERVICE"] = service

    def _slot_fields(payload: dict[str, Any]) -> tuple[date, time, time]:
        text = str(payload.get("text", "")).strip()
        if text:
            parsed = parse_slot_request(text, reference_date=clock().date())
            return parsed.day, parsed.start_time, parsed.end_time

        missing = [name for name in ("day", "start_time", "end_time") if not str(payload.get(name, "")).strip()]
        if missing:
            raise ValueError(f"Missing fields: {', '.join(missing)}")
        return (
            parse_day(str(payload["day"])),
            parse_time_of_day(str(payload["start_time"])),
            parse_time_of_day(str(payload["end_time"])),
        )

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.get("/api/spaces/<space_id>/slots")
    def list_space_slots(space_id: str) -> Any:
        day_arg = str(request.args.get("day", "")).strip()
        available_only = str(request.args.get("available_only", "")).strip().lower() in TRUE_VALUES
        try:
            day = parse_day(day_arg) if day_arg else None
            slots = service.list_slots(space_id, day=day, available_only=available_only)
            summary = service.summarize_slots(space_id, day=day)
        except ValueError as error:
            return _error_response(error)

        return jsonify(
            {
                "ok": True,
                "space_id": space_id,
                "day": day.isoformat() if day else None,
                "slots": [slot.to_dict() for slot in slots],
                "summary": summary.to_dict(),
            }
        )

    @app.post("/api/spaces/<space_id>/rate")
    def set_space_rate(space_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        if payload.get("hourly_rate") is None:
            return jsonify({"ok": False, "message": "hourly_rate is required."}), 400
        try:
            rate = repository.set_hourly_rate(space_id, str(payload["hourly_rate"]))
        except ValueError:
            return jsonify({"ok": False, "message": "hourly_rate must be a finite, non-negative number."}), 400
        return jsonify({"ok": True, "space_id": space_id, "hourly_rate": str(rate)})

    @app.get("/api/slots/<slot_id>")
    def get_slot(slot_id: str) -> Any:
        try:
            slot = service.get_slot(slot_id)
        except ValueError as error:
            return _error_response(error)
        return jsonify({"ok": True, "slot": slot.to_dict()})

    @app.post("/api/slots")
    def create_slot() -> Any:
        payload = request.get_json(silent=True) or {}
        try:
            day, start_time, end_time = _slot_fields(payload)
            created = service.create_slot(str(payload.get("space_id", "")), day, start_time, end_time)
        except ValueError as error:
            return _error_response(error)
        return jsonify({"ok": True, "slot": created.to_dict()}), 201

    @app.post("/api/slots/hourly")
    def create_hourly_slots() -> Any:
        payload = request.get_json(silent=True) or {}
        try:
            day, start_time, end_time = _slot_fields(payload)
            batch = service.create_hourly_slots(str(payload.get("space_id", "")), day, start_time, end_time)
        except ValueError as error:
            return _error_response(error)
        return jsonify({"ok": bool(batch.created), **batch.to_dict()})

    @app.post("/api/slots/<slot_id>/update")
    def update_slot(slot_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        try:
            day, start_time, end_time = _slot_fields(payload)
            updated = service.update_slot(slot_id, day, start_time, end_time)
        except ValueError as error:
            return _error_response(error)
        return jsonify({"ok": True, "slot": updated.to_dict()})

    @app.post("/api/slots/<slot_id>/delete")
    def delete_slot(slot_id: str) -> Any:
        try:
            deleted = service.delete_slot(slot_id)
        except ValueError as error:
            return _error_response(error)
        return jsonify({"ok": True, "slot": deleted.to_dict()})

    @app.post("/api/slots/<slot_id>/reserve")
    def reserve_slot(slot_id: str) -> Any:
        try:
            binding = service.reserve_slot(slot_id)
        except ValueError as error:
            return _error_response(error)
        return jsonify({"ok": True, **binding.to_dict()})

    @app.post("/api/slots/<slot_id>/release")
    def release_slot(slot_id: str) -> Any:
        try:
            released = service.release_slot(slot_id)
        except ValueError as error:
            return _error_response(error)
        return jsonify({"ok": True, "slot": released.to_dict()})

    @app.post("/api/reservations")
    def reserve_slots() -> Any:
        payload = request.get_json(silent=True) or {}
        slot_ids = [str(value).strip() for value in payload.get("slot_ids", []) if str(value).strip()]
        try:
            binding = service.reserve_slots(slot_ids)
        except ValueError as error:
            return _error_response(error)
        return jsonify({"ok": True, **binding.to_dict()})

    return app


def _error_response(error: ValueError) -> Any:
    if not isinstance(error, SchedulingError):
        return jsonify({"ok": False, "kind": "BadRequest", "message": str(error)}), 400

    body: dict[str, Any] = {"ok": False, "kind": error.kind, "message": str(error)}
    if isinstance(error, SlotConflictError):
        body["conflicting"] = [slot.to_dict() for slot in error.conflicting]

    if error.kind in NOT_FOUND_KINDS:
        status = 404
    elif error.kind in STATE_CONFLICT_KINDS:
        status = 409
    else:
        status = 400
    return jsonify(body), status


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
