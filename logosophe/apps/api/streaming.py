from __future__ import annotations

from urllib.parse import quote

from fastapi import HTTPException
from starlette.responses import StreamingResponse

from logosophe.services.ranges import parse_range_header
from logosophe.services.storage import ObjectStore


def _content_disposition(file_name: str, *, attachment: bool) -> str:
    disposition = "attachment" if attachment else "inline"
    return f"{disposition}; filename*=UTF-8''{quote(file_name)}"


def build_object_response(
    *,
    store: ObjectStore,
    storage_key: str,
    file_name: str,
    content_type: str | None,
    range_header: str | None,
    attachment: bool = False,
    extra_headers: dict[str, str] | None = None,
) -> StreamingResponse:
    # 206 with exact Content-Range/Length for a satisfiable range, 200 otherwise; 416 raised by the parser.
    info = store.head(storage_key)
    if info is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "File content not found"})
    byte_range = parse_range_header(range_header, info.size)
    headers = {
        "Accept-Ranges": "bytes",
        "Content-Disposition": _content_disposition(file_name, attachment=attachment),
        **(extra_headers or {}),
    }
    media_type = content_type or info.content_type
    if byte_range is None:
        headers["Content-Length"] = str(info.size)
        return StreamingResponse(
            store.iter_bytes(storage_key),
            status_code=200,
            media_type=media_type,
            headers=headers,
        )
    headers["Content-Range"] = byte_range.content_range(info.size)
    headers["Content-Length"] = str(byte_range.length)
    return StreamingResponse(
        store.iter_bytes(storage_key, offset=byte_range.start, length=byte_range.length),
        status_code=206,
        media_type=media_type,
        headers=headers,
    )
