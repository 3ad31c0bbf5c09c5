"""Static file hosting for the device (deeplink pages, fixtures)."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, PlainTextResponse, Response

router = APIRouter(prefix="/file", tags=["files"])


def resolve_hosted_path(raw: str, root: Path | None = None) -> Path:
    """Absolute paths are served as-is, others relative to *root* (cwd by default)."""
    path = Path(raw)
    if raw.startswith("/") or path.is_absolute():
        return path
    return (root or Path.cwd()) / path


@router.get("/{file_path:path}")
async def get_file(file_path: str, request: Request) -> Response:
    root = getattr(request.app.state, "file_root", None)
    path = resolve_hosted_path(file_path, root)
    if not path.is_file():
        return PlainTextResponse("File Not Found", status_code=404)
    return FileResponse(path)
