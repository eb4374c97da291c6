"""
Decoding of responses from the remote query service.

The remote service does not commit to a single wire encoding. A response body
may be:

- a single JSON-RPC message with a ``result`` (or ``error``) member, or
- event-stream framed text made of ``event:`` / ``data:`` line pairs, where the
  last message carrying both ``id`` and ``result`` is authoritative.

Inside the result, ``content[0].text`` may itself hold a plain error string, a
JSON object, or newline-delimited records (``metadata`` line, one line per row,
``completion`` line). Everything is resolved to a :class:`QueryResult` so that
callers never see which shape was used.
"""

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from loguru import logger

from .models import QueryMetadata, QueryResult, ToolResult

ERROR_PREFIX = "Error:"
ERROR_MARKERS = (
    "Binder Error:",
    "Catalog Error:",
    "Parser Error:",
    "SQL execution failed:",
)

_EVENT_STREAM_RE = re.compile(r"^(event|data):", re.MULTILINE)
_METADATA_RE = re.compile(r'"type"\s*:\s*"metadata"')
_ROW_COLLECTION_KEYS = ("results", "data", "rows")
_RESULT_SHAPE_KEYS = frozenset(
    {"columns", "row_count", "rowCount", "actual_row_count", "sql", "execution_time_ms"}
)


def _null_constant(token: str) -> None:
    # NaN / Infinity / -Infinity are not valid strict JSON
    return None


def loads_lenient(text: str) -> Any:
    """Parse JSON, rewriting non-standard numeric tokens to ``None``."""
    return json.loads(text, parse_constant=_null_constant)


# ----------------------------------------------------------------------
# Decoded envelope
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Envelope:
    """A decoded JSON-RPC message from the remote service."""

    message: dict[str, Any]
    event: str = "message"

    @property
    def id(self) -> Any:
        return self.message.get("id")

    @property
    def result(self) -> Any:
        return self.message.get("result")

    @property
    def error(self) -> Optional[str]:
        error = self.message.get("error")
        if error is None:
            return None
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)


@dataclass(frozen=True)
class ProtocolError:
    """The response matched none of the recognized encodings."""

    reason: str


Decoded = Union[Envelope, ProtocolError]


def is_event_stream(raw_text: str) -> bool:
    return bool(_EVENT_STREAM_RE.search(raw_text))


def decode(raw_text: Optional[str]) -> Decoded:
    """Decode a raw response body into an :class:`Envelope`."""
    if raw_text is None or not raw_text.strip():
        return ProtocolError("empty response body")

    if is_event_stream(raw_text):
        return _decode_event_stream(raw_text)
    return _decode_json(raw_text)


def parse_event_stream(raw_text: str) -> list[Envelope]:
    """Collect every decodable ``data:`` message of an event stream, in order."""
    entries: list[Envelope] = []
    current_event: Optional[str] = None

    # splitlines() accepts both \n and \r\n
    for line in raw_text.splitlines():
        if line.startswith("event:"):
            current_event = line[len("event:"):].strip() or None
            continue

        if line.startswith("data:"):
            payload = line[len("data:"):].strip()
            label = current_event or "message"
            current_event = None
            if not payload:
                continue
            try:
                data = loads_lenient(payload)
            except ValueError:
                logger.debug(f"[Codec] Ignoring undecodable event data: {payload[:100]}")
                continue
            if isinstance(data, dict):
                entries.append(Envelope(message=data, event=label))
            continue

        if not line.strip():
            current_event = None

    return entries


def _decode_event_stream(raw_text: str) -> Decoded:
    entries = parse_event_stream(raw_text)
    logger.debug(f"[Codec] Parsed {len(entries)} event-stream entries")

    for entry in reversed(entries):
        if entry.id is not None and entry.result is not None:
            return entry

    for entry in reversed(entries):
        if entry.error is not None:
            return ProtocolError(f"event stream carried no result: {entry.error}")

    return ProtocolError("event stream carried no message with both id and result")


def _decode_json(raw_text: str) -> Decoded:
    try:
        data = loads_lenient(raw_text)
    except ValueError:
        return ProtocolError("response is neither event-stream nor JSON")

    if not isinstance(data, dict):
        return ProtocolError(f"unexpected JSON document of type {type(data).__name__}")

    if "result" in data or "error" in data:
        return Envelope(message=data)

    return ProtocolError("JSON response carries neither result nor error")


# ----------------------------------------------------------------------
# Payload variants
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ErrorText:
    """The remote service reported a failure inside a successful response."""

    message: str


@dataclass
class RecordStream:
    """Newline-delimited records framed by metadata and completion lines."""

    records: list[dict[str, Any]] = field(default_factory=list)
    columns: Optional[list[str]] = None
    row_count: Optional[int] = None
    actual_row_count: Optional[int] = None
    execution_time_ms: Optional[float] = None
    sql: Optional[str] = None
    truncated: Optional[bool] = None
    total_lines: int = 0
    skipped_lines: int = 0

    @property
    def skipped_ratio(self) -> float:
        if not self.total_lines:
            return 0.0
        return self.skipped_lines / self.total_lines


@dataclass(frozen=True)
class SingleObject:
    """A single JSON value (usually an object) returned by the tool."""

    value: Any


@dataclass(frozen=True)
class OpaqueText:
    """Text that is neither an error nor JSON; kept verbatim."""

    text: str


Payload = Union[ErrorText, RecordStream, SingleObject, OpaqueText]


def is_error_text(text: str) -> bool:
    if text.lstrip().startswith(ERROR_PREFIX):
        return True
    return any(marker in text for marker in ERROR_MARKERS)


def classify_payload(envelope: Envelope) -> Payload:
    """Resolve the payload carried by an envelope into one variant."""
    if envelope.error is not None:
        return ErrorText(envelope.error)

    result = envelope.result
    if not isinstance(result, dict):
        return SingleObject(result)

    content = result.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict):
        if "text" in content[0]:
            text = content[0]["text"]
            if not isinstance(text, str):
                return SingleObject(text)
            if result.get("isError"):
                return ErrorText(text)
            return classify_text(text)

    if "structuredContent" in result:
        return SingleObject(result["structuredContent"])

    return SingleObject(result)


def classify_text(text: str) -> Payload:
    if is_error_text(text):
        return ErrorText(text)

    if "\n" in text and _METADATA_RE.search(text):
        return parse_record_stream(text)

    try:
        return SingleObject(loads_lenient(text))
    except ValueError:
        return OpaqueText(text)


def parse_record_stream(text: str) -> RecordStream:
    """
    Parse newline-delimited records.

    Malformed lines are counted and skipped; they never abort the extraction.
    """
    stream = RecordStream()

    for index, raw_line in enumerate(text.splitlines()):
        line = raw_line.strip()
        if not line:
            continue
        stream.total_lines += 1

        try:
            parsed = loads_lenient(line)
        except ValueError as exc:
            stream.skipped_lines += 1
            logger.debug(f"[Codec] Skipping malformed line {index}: {exc}")
            continue

        if not isinstance(parsed, dict):
            stream.skipped_lines += 1
            continue

        kind = parsed.get("type")
        if kind == "metadata":
            stream.columns = _column_names(parsed.get("columns"))
            stream.row_count = _as_int(parsed.get("row_count", parsed.get("rowCount")))
            stream.sql = parsed.get("sql")
            stream.truncated = parsed.get("truncated")
        elif kind == "completion":
            stream.execution_time_ms = _as_float(
                parsed.get("execution_time_ms", parsed.get("executionTime"))
            )
            stream.actual_row_count = _as_int(parsed.get("actual_row_count"))
        else:
            stream.records.append(parsed)

    if stream.skipped_lines:
        logger.warning(
            f"[Codec] Skipped {stream.skipped_lines}/{stream.total_lines} malformed record lines"
        )
    return stream


# ----------------------------------------------------------------------
# Normalization
# ----------------------------------------------------------------------
def extract_payload(envelope: Envelope, database: Optional[str] = None) -> QueryResult:
    """Normalize an envelope into a :class:`QueryResult`."""
    return to_query_result(classify_payload(envelope), database=database)


def to_query_result(payload: Payload, database: Optional[str] = None) -> QueryResult:
    if isinstance(payload, ErrorText):
        return QueryResult.failure(payload.message, kind="query")

    if isinstance(payload, RecordStream):
        data = payload.records
        return QueryResult(
            success=True,
            data=data,
            metadata=QueryMetadata(
                row_count=_first_count(payload.actual_row_count, payload.row_count, len(data)),
                execution_time=payload.execution_time_ms,
                columns=payload.columns,
                database=database,
                skipped_lines=payload.skipped_lines or None,
            ),
        )

    if isinstance(payload, OpaqueText):
        data = [{"result": payload.text}]
        return QueryResult(
            success=True,
            data=data,
            metadata=QueryMetadata(row_count=1, database=database),
        )

    value = payload.value
    if isinstance(value, list):
        return QueryResult(
            success=True,
            data=value,
            metadata=QueryMetadata(row_count=len(value), database=database),
        )

    if not isinstance(value, dict):
        data = [] if value is None else [{"result": value}]
        return QueryResult(
            success=True,
            data=data,
            metadata=QueryMetadata(row_count=len(data), database=database),
        )

    if value.get("success") is False or value.get("error"):
        return QueryResult.failure(
            str(value.get("error") or "Query execution failed"), kind="query"
        )

    data = _row_collection(value)
    return QueryResult(
        success=True,
        data=data,
        metadata=QueryMetadata(
            row_count=_first_count(
                _as_int(value.get("actual_row_count")),
                _as_int(value.get("row_count", value.get("rowCount"))),
                len(data),
            ),
            execution_time=_as_float(value.get("execution_time_ms", value.get("executionTime"))),
            columns=_column_names(value.get("columns")),
            database=database or _as_str(value.get("database")),
        ),
    )


def to_tool_result(payload: Payload) -> ToolResult:
    if isinstance(payload, ErrorText):
        return ToolResult.failure(payload.message, kind="query")
    if isinstance(payload, RecordStream):
        return ToolResult(success=True, value=payload.records)
    if isinstance(payload, OpaqueText):
        return ToolResult(success=True, value=payload.text)
    return ToolResult(success=True, value=payload.value)


def _row_collection(value: dict[str, Any]) -> list[Any]:
    for key in _ROW_COLLECTION_KEYS:
        rows = value.get(key)
        if isinstance(rows, list):
            return rows
    if not value or _RESULT_SHAPE_KEYS.intersection(value):
        return []
    # scalar or single-object result
    return [value]


def _column_names(columns: Any) -> Optional[list[str]]:
    if not isinstance(columns, list):
        return None
    names = []
    for column in columns:
        if isinstance(column, dict):
            names.append(str(column.get("name", "")))
        else:
            names.append(str(column))
    return names


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _first_count(*counts: Optional[int]) -> int:
    for count in counts:
        if count is not None:
            return count
    return 0
