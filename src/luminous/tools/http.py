"""Outbound HTTP helpers shared by the web-facing capabilities."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib.request import Request, urlopen

from luminous.errors import CapabilityExecutionError

USER_AGENT = "luminous-relay/1.0"
LOG_PREVIEW_CHARS = 200


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)


def normalize_url(raw_url: str) -> str | None:
    normalized = raw_url.strip()
    if not normalized:
        return None

    parsed = urllib_parse.urlparse(normalized)
    if parsed.scheme and parsed.netloc:
        if parsed.scheme not in {"http", "https"}:
            return None
        return normalized

    if parsed.scheme == "" and parsed.netloc == "" and parsed.path:
        with_scheme = f"https://{normalized}"
        parsed = urllib_parse.urlparse(with_scheme)
        if parsed.netloc:
            return with_scheme

    return None


def with_query(url: str, params: dict[str, str | int]) -> str:
    return f"{url}?{urllib_parse.urlencode(params)}"


def send_request(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    body: str | bytes | None = None,
    timeout: float = 20,
) -> HttpResponse:
    """Blocking request. HTTP error statuses are responses; transport failures raise."""
    data = body.encode("utf-8") if isinstance(body, str) else body
    merged_headers = {"User-Agent": USER_AGENT, **(headers or {})}
    request = Request(url, data=data, headers=merged_headers, method=method.upper())  # noqa: S310
    try:
        with urlopen(request, timeout=timeout) as response:  # noqa: S310
            raw = response.read()
            return HttpResponse(
                status=int(getattr(response, "status", 200)),
                body=_decode(raw, response),
                headers=_headers(response),
            )
    except urllib_error.HTTPError as exc:
        return HttpResponse(status=exc.code, body=_decode(exc.read(), exc), headers=_headers(exc))
    except urllib_error.URLError as exc:
        raise CapabilityExecutionError(f"{method.upper()} {url} failed: {exc.reason}") from exc
    except (OSError, ValueError) as exc:
        raise CapabilityExecutionError(f"{method.upper()} {url} failed: {exc!s}") from exc


async def fetch(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    body: str | bytes | None = None,
    timeout: float = 20,
) -> HttpResponse:
    return await asyncio.to_thread(send_request, method, url, headers=headers, body=body, timeout=timeout)


def preview(text: str, *, limit: int = LOG_PREVIEW_CHARS) -> str:
    """Single-line preview for logs. The data itself is never truncated."""
    normalized = " ".join(text.split())
    if len(normalized) > limit:
        return normalized[:limit] + "..."
    return normalized


def _decode(raw: bytes | None, response: object) -> str:
    if not raw:
        return ""
    headers = getattr(response, "headers", None)
    charset = None
    if headers is not None and hasattr(headers, "get_content_charset"):
        charset = headers.get_content_charset()
    return raw.decode(charset or "utf-8", errors="replace")


def _headers(response: object) -> dict[str, str]:
    headers = getattr(response, "headers", None)
    if headers is None or not hasattr(headers, "items"):
        return {}
    return {str(key): str(value) for key, value in headers.items()}
