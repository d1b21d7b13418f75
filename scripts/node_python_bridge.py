"""Run one scheduling API call for a Node.js front end.

Usage: ``python scripts/node_python_bridge.py <action> < request.json``

The JSON request on stdin carries the route parameters (``space_id`` or
``slot_id``) next to the body fields. The API reply is printed as
``{"status": <code>, "json": <body>}``.
"""

from __future__ import annotations

import json
from pathlib import Path
import sys
from typing import Any
from urllib.parse import quote, urlencode

# action -> (HTTP method, path template, route keys)
ACTIONS: dict[str, tuple[str, str, tuple[str, ...]]] = {
    "list": ("GET", "/api/spaces/{space_id}/slots", ("space_id",)),
    "rate": ("POST", "/api/spaces/{space_id}/rate", ("space_id",)),
    "get": ("GET", "/api/slots/{slot_id}", ("slot_id",)),
    "create": ("POST", "/api/slots", ()),
    "hourly": ("POST", "/api/slots/hourly", ()),
    "update": ("POST", "/api/slots/{slot_id}/update", ("slot_id",)),
    "delete": ("POST", "/api/slots/{slot_id}/delete", ("slot_id",)),
    "reserve": ("POST", "/api/slots/{slot_id}/reserve", ("slot_id",)),
    "release": ("POST", "/api/slots/{slot_id}/release", ("slot_id",)),
    "reserve-many": ("POST", "/api/reservations", ()),
}

LIST_QUERY_KEYS = ("day", "available_only")


def _load_request() -> dict[str, Any]:
    text = sys.stdin.read().strip()
    if not text:
        return {}
    try:
        request = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return request if isinstance(request, dict) else {}


def _build_path(template: str, route_keys: tuple[str, ...], request: dict[str, Any]) -> str:
    values = {key: quote(str(request.pop(key, "")), safe="") for key in route_keys}
    return template.format(**values)


def main() -> int:
    if len(sys.argv) < 2 or sys.argv[1] not in ACTIONS:
        print(f"usage: node_python_bridge.py <{'|'.join(ACTIONS)}>", file=sys.stderr)
        return 2

    method, template, route_keys = ACTIONS[sys.argv[1]]
    request = _load_request()
    path = _build_path(template, route_keys, request)

    project_root = Path(__file__).resolve().parent.parent
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))

    from parking_schedule.web_app import create_app

    client = create_app("data").test_client()
    if method == "GET":
        query = {key: str(request[key]) for key in LIST_QUERY_KEYS if request.get(key) is not None}
        response = client.get(f"{path}?{urlencode(query)}" if query else path)
    else:
        response = client.post(path, json=request)

    print(json.dumps({"status": response.status_code, "json": response.get_json() or {}}))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
