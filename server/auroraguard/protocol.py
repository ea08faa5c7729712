from __future__ import annotations

import json
from typing import Any

from auroraguard.models import Notice


def dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def loads(text: str) -> Any:
    return json.loads(text)


def notice_message(notice: Notice) -> dict[str, Any]:
    return {"type": "notice", **notice.as_dict()}


def transcript_message(text: str, listening: bool) -> dict[str, Any]:
    return {"type": "transcript", "text": text, "listening": listening}


def error_message(message: str, request_type: str | None = None) -> dict[str, Any]:
    return {"type": "error", "message": message, "request": request_type}


def parse_id_list(raw: Any) -> list[str] | None:
    if not isinstance(raw, list):
        return None
    ids: list[str] = []
    for item in raw:
        if not isinstance(item, (str, int)):
            return None
        ids.append(str(item))
    return ids
