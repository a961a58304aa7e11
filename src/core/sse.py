"""SSE (Server-Sent Events) encoding, decoding and error detection."""

import json
from dataclasses import dataclass, field
from typing import Any, Optional


def format_sse_event(event_type: str, data: dict[str, Any]) -> bytes:
    """Format a named SSE event with a JSON payload."""
    json_str = json.dumps(data, ensure_ascii=False)
    return f"event: {event_type}\ndata: {json_str}\n\n".encode("utf-8")


@dataclass
class SSEEvent:
    data: Optional[str]
    event: Optional[str] = None
    other_lines: list[str] = field(default_factory=list)

    def encode(self) -> bytes:
        lines: list[str] = []
        if self.event is not None:
            lines.append(f"event: {self.event}")
        lines.extend(self.other_lines)
        if self.data is not None:
            for item in self.data.split("\n"):
                if item:
                    lines.append(f"data: {item}")
                else:
                    lines.append("data:")
        text = "\n".join(lines) + "\n\n"
        return text.encode("utf-8")


class SSEDecoder:
    """Incremental SSE decoder; events may be split across chunks."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        if not chunk:
            return []
        text = chunk.decode("utf-8", errors="replace")
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        self._buffer += text
        events: list[SSEEvent] = []

        while True:
            sep_index = self._buffer.find("\n\n")
            if sep_index == -1:
                break
            raw_event = self._buffer[:sep_index]
            self._buffer = self._buffer[sep_index + 2:]
            if not raw_event.strip():
                continue
            events.append(self._parse_event(raw_event))

        return events

    def flush(self) -> list[SSEEvent]:
        """Parse whatever is left once the stream has ended."""
        if not self._buffer.strip():
            self._buffer = ""
            return []
        leftover = self._buffer
        self._buffer = ""
        return [self._parse_event(leftover.strip("\n"))]

    @staticmethod
    def _parse_event(raw: str) -> SSEEvent:
        data_lines: list[str] = []
        other_lines: list[str] = []
        event_name: Optional[str] = None
        for line in raw.split("\n"):
            if line.startswith("data:"):
                data_lines.append(line[5:].lstrip())
            elif line.startswith("event:"):
                event_name = line[6:].strip()
            else:
                other_lines.append(line)
        data = "\n".join(data_lines) if data_lines else None
        return SSEEvent(data=data, event=event_name, other_lines=other_lines)


def extract_stream_error(parsed: Any) -> Optional[str]:
    """Return an error message if a decoded SSE payload is an error event.

    Detects patterns like:
    - {"type":"error","error":{...}}
    - Generic: {"error":{...}}
    """
    if not isinstance(parsed, dict):
        return None

    if parsed.get("type") == "error":
        error_obj = parsed.get("error") or {}
        if isinstance(error_obj, dict):
            error_msg = error_obj.get("message") or str(error_obj)
        else:
            error_msg = str(error_obj)
        return f"upstream stream error: {error_msg or 'unknown error'}"

    error_obj = parsed.get("error")
    if isinstance(error_obj, dict):
        error_msg = error_obj.get("message") or str(error_obj)
        error_type = error_obj.get("type", "unknown")
        return f"upstream stream error: {error_msg} (type={error_type})"

    return None
