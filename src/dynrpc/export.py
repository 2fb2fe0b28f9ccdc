import json
from datetime import datetime, timezone
from pathlib import Path

from dynrpc.constants import EXPORT_FILENAME_FORMAT


def default_export_filename(now=None) -> str:
    """``response_YYYYMMDD_HHMMSS.json`` for the given (or current) time."""
    return (now or datetime.now()).strftime(EXPORT_FILENAME_FORMAT)


def export_response(response, destination, include_metadata: bool = False) -> Path:
    """Writes a ``UnaryResponse`` body to ``destination``.

    With ``include_metadata`` the body is wrapped together with timing and
    status so the file stands on its own.
    """
    destination = Path(destination)
    if include_metadata:
        wrapper = {
            "response": response.response_json,
            "responseTime": response.elapsed_seconds,
            "statusCode": response.status_code,
            "statusMessage": response.status_message,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }
        content = json.dumps(wrapper, indent=2)
    else:
        content = response.response_json

    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(content, encoding="utf-8")
    return destination
