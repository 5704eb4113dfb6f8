from __future__ import annotations
import time, urllib.parse, httpx

"""
Tool: fetch_url
Description: Fetch a URL (text focus), auto-upgrade http->https, 15min cache.
Args: {"url": "...", "timeout_ms": 20000, "max_bytes": 200000}
Returns: "status=<code>\n<body-truncated>"
"""

_CACHE: dict[str, tuple[float, str]] = {}   # url -> (timestamp, data)
_TTL_SEC = 900


def _cache_get(url: str) -> str | None:
    t = _CACHE.get(url)
    if not t:
        return None
    ts, data = t
    if time.time() - ts > _TTL_SEC:
        _CACHE.pop(url, None)
        return None
    return data


def _cache_put(url: str, data: str) -> None:
    _CACHE[url] = (time.time(), data)


def fetch_url(repo: str, url: str, timeout_ms: int = 20000, max_bytes: int = 200_000) -> str:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return f"ERROR: unsupported URL scheme '{parsed.scheme}'"
    if parsed.scheme == "http":
        url = urllib.parse.urlunparse(parsed._replace(scheme="https"))

    cached = _cache_get(url)
    if cached is not None:
        return cached

    try:
        with httpx.Client(follow_redirects=True, timeout=timeout_ms / 1000) as client:
            r = client.get(url)
    except httpx.HTTPError as e:
        return f"ERROR: {type(e).__name__}: {e}"

    if r.status_code >= 400:
        return f"ERROR: status={r.status_code} fetching {url}"
    ctype = r.headers.get("content-type", "").lower()
    if ctype and not ctype.startswith("text/") and "html" not in ctype and "json" not in ctype:
        return f"ERROR: unsupported content type {ctype}"
    body = r.text
    if len(body) > max_bytes:
        body = body[:max_bytes] + "…"
    out = f"status={r.status_code}\n{body}"
    _cache_put(url, out)
    return out
