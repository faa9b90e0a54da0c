import json
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class HttpResult:
    status: int
    reason: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    data: Any = None
    raw: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _decode(body: bytes):
    # Some servers omit or mislabel Content-Type; try JSON regardless.
    if not body:
        return None
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None


def request_json(
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    payload: Any = None,
    timeout: float = 30,
) -> HttpResult:
    """
    Perform an HTTP request and decode a JSON body when present.

    Non-2xx responses come back as an HttpResult (status + decoded body) instead of
    raising; network failures (DNS, refused, timeout) still raise URLError/OSError.
    """
    data = None
    hdrs = {"Accept": "application/json", **(headers or {})}
    if payload is not None:
        data = json.dumps(payload, default=str).encode("utf-8")
        hdrs.setdefault("Content-Type", "application/json")
    req = urllib.request.Request(url, data=data, headers=hdrs, method=method.upper())
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read() or b""
            resp_headers = {k.lower(): v for k, v in resp.headers.items()}
            return HttpResult(
                status=resp.status,
                reason=getattr(resp, "reason", "") or "",
                headers=resp_headers,
                data=_decode(body),
                raw=body,
            )
    except urllib.error.HTTPError as ex:
        try:
            body = ex.read() or b""
        except Exception:
            body = b""
        resp_headers = {k.lower(): v for k, v in (ex.headers.items() if ex.headers else [])}
        return HttpResult(
            status=int(ex.code),
            reason=str(ex.reason or ""),
            headers=resp_headers,
            data=_decode(body),
            raw=body,
        )


def download_bytes(url: str, timeout: float = 30):
    """Return (content_type, bytes) for a 2xx GET, else None."""
    req = urllib.request.Request(url, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return (resp.headers.get("Content-Type") or "", resp.read() or b"")
    except urllib.error.HTTPError:
        return None
