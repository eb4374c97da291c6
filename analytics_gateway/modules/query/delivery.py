"""
Adaptive delivery of query results.

Small results go out as one JSON document. Results above the streaming
threshold are sent as newline-delimited JSON: one metadata line followed by
one line per row, produced incrementally.
"""

import json
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from loguru import logger

from .models import QueryResult

STREAMING_THRESHOLD = 1000
NDJSON_MEDIA_TYPE = "application/x-ndjson"


class DeliveryMode(str, Enum):
    BUFFERED = "buffered"
    CHUNKED = "chunked"


def choose_delivery_mode(
    row_count: int,
    data: Any,
    threshold: int = STREAMING_THRESHOLD,
) -> DeliveryMode:
    """Stream only when the row count exceeds the threshold and rows form a sequence."""
    if row_count > threshold and isinstance(data, list):
        return DeliveryMode.CHUNKED
    return DeliveryMode.BUFFERED


def metadata_line(result: QueryResult) -> str:
    metadata = result.metadata
    header = {
        "type": "metadata",
        "success": True,
        "rowCount": result.row_count,
        "columns": metadata.columns if metadata else None,
        "executionTime": metadata.execution_time if metadata else None,
    }
    return json.dumps(header, ensure_ascii=False) + "\n"


def row_line(row: Any) -> str:
    return json.dumps({"type": "row", "data": row}, ensure_ascii=False) + "\n"


async def stream_result_lines(
    result: QueryResult,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    check_interval: int = 100,
) -> AsyncIterator[str]:
    """
    Yield the metadata line, then one line per row.

    Stops early when ``is_disconnected`` reports that the consumer went away.
    """
    yield metadata_line(result)

    interval = max(1, check_interval)
    rows = result.data or []
    for index, row in enumerate(rows):
        if is_disconnected is not None and index % interval == 0 and await is_disconnected():
            logger.warning(
                f"[Delivery] Consumer disconnected after {index}/{len(rows)} rows; stopping stream"
            )
            return
        yield row_line(row)

    logger.debug(f"[Delivery] Streamed {len(rows)} rows")


def build_response(
    result: QueryResult,
    request: Optional[Request] = None,
    threshold: int = STREAMING_THRESHOLD,
    check_interval: int = 100,
) -> Response:
    """Build the buffered or chunked response for a successful result."""
    mode = choose_delivery_mode(result.row_count, result.data, threshold)

    if mode is DeliveryMode.CHUNKED:
        logger.info(f"[Delivery] Streaming {result.row_count} rows as NDJSON")
        return StreamingResponse(
            stream_result_lines(
                result,
                is_disconnected=request.is_disconnected if request is not None else None,
                check_interval=check_interval,
            ),
            media_type=NDJSON_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache"},
        )

    return JSONResponse(content=result.to_response())
