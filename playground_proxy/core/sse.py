"""SSE (Server-Sent Events) framing for the public stream."""

import json
from typing import Any, Mapping

SSE_DONE_FRAME = b"data: [DONE]\n\n"


def format_sse_data(payload: Mapping[str, Any]) -> bytes:
    """Encode one JSON payload as a ``data:`` frame."""
    json_str = json.dumps(payload, ensure_ascii=False)
    return f"data: {json_str}\n\n".encode("utf-8")


def build_error_payload(
    message: str,
    error_type: str = "server_error",
    code: str = "internal_server_error",
) -> dict[str, Any]:
    """Build the OpenAI-style error envelope."""
    return {
        "error": {
            "message": message,
            "type": error_type,
            "code": code,
        }
    }
