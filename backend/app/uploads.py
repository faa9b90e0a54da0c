"""
Local-disk file storage under UPLOAD_DIR.

Stored files are referenced by their public URL `/api/uploads/<relative path>`.
"""
import mimetypes
import os
import re
import uuid
from typing import Optional, Tuple

from .config import settings
from .http_client import download_bytes
from .logging_utils import json_log

PUBLIC_PREFIX = "/api/uploads/"


class UploadTooLarge(Exception):
    pass


class UnsafePath(Exception):
    pass


def upload_root() -> str:
    return os.path.realpath(settings.upload_dir)


def safe_filename(name: Optional[str]) -> str:
    n = os.path.basename((name or "").replace("\\", "/")).strip()
    n = re.sub(r"[^A-Za-z0-9._-]+", "_", n).strip("._")
    if len(n) > 120:
        n = n[-120:]
    return n or "file"


def public_url(rel_path: str) -> str:
    return PUBLIC_PREFIX + rel_path.replace(os.sep, "/").lstrip("/")


def save_upload(data: bytes, filename: Optional[str], subdir: Optional[str] = None) -> str:
    """Write bytes to `<UPLOAD_DIR>[/subdir]/<uuid>-<name>`; returns the path relative to UPLOAD_DIR."""
    max_bytes = settings.upload_max_mb * 1024 * 1024
    if len(data or b"") > max_bytes:
        raise UploadTooLarge(f"file too large (max {settings.upload_max_mb}MB)")
    rel_dir = safe_filename(subdir) if subdir else ""
    target_dir = os.path.join(upload_root(), rel_dir) if rel_dir else upload_root()
    os.makedirs(target_dir, exist_ok=True)
    name = f"{uuid.uuid4().hex}-{safe_filename(filename)}"
    with open(os.path.join(target_dir, name), "wb") as f:
        f.write(data or b"")
    return os.path.join(rel_dir, name) if rel_dir else name


def resolve_upload_path(rel_path: str) -> str:
    """Absolute path for `rel_path`; raises UnsafePath when it escapes UPLOAD_DIR."""
    root = upload_root()
    candidate = os.path.realpath(os.path.join(root, (rel_path or "").lstrip("/")))
    if candidate != root and not candidate.startswith(root + os.sep):
        raise UnsafePath(rel_path)
    return candidate


def rel_from_public(url_or_path: Optional[str]) -> Optional[str]:
    if not url_or_path:
        return None
    if url_or_path.startswith(PUBLIC_PREFIX):
        return url_or_path[len(PUBLIC_PREFIX):]
    return url_or_path


def delete_upload(url_or_path: Optional[str]) -> bool:
    rel = rel_from_public(url_or_path)
    if not rel:
        return False
    try:
        path = resolve_upload_path(rel)
    except UnsafePath:
        return False
    if not os.path.isfile(path):
        return False
    os.remove(path)
    return True


def guess_content_type(path: str) -> str:
    return mimetypes.guess_type(path)[0] or "application/octet-stream"


def download_external_image(url: str, fetch=download_bytes) -> Optional[str]:
    """
    Fetch a remote image into UPLOAD_DIR. Returns its public URL, or None when the URL
    does not serve an image.
    """
    try:
        got: Optional[Tuple[str, bytes]] = fetch(url, timeout=30)
    except OSError as exc:
        json_log("warning", "uploads.download_failed", url=url, error=str(exc))
        return None
    if not got:
        return None
    content_type, body = got
    ctype = (content_type or "").split(";", 1)[0].strip().lower()
    if not ctype.startswith("image/"):
        return None
    ext = ctype.split("/", 1)[1] or "jpg"
    try:
        rel = save_upload(body, f"imported.{ext}")
    except UploadTooLarge:
        json_log("warning", "uploads.download_too_large", url=url)
        return None
    return public_url(rel)
