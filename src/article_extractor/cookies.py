"""
Cookie file handling.

Supports the two formats browsers export:
- Netscape cookies.txt (tab-separated, expiry in seconds)
- JSON array of cookie objects (browser extension exports)

All Cookie.expires values are epoch milliseconds.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

import httpx

from article_extractor.constants import HTTP_USER_AGENT, LOGIN_PAGE_MARKERS
from article_extractor.errors import config_validation, file_system_error
from article_extractor.models import Cookie

logger = logging.getLogger(__name__)


HTTP_ONLY_PREFIX = "#HttpOnly_"


@dataclass
class CookieValidationResult:
    """Outcome of checking cookies against a live page."""
    valid: bool
    message: str
    expired_cookies: List[Cookie] = field(default_factory=list)


def parse_netscape_format(text: str) -> List[Cookie]:
    """
    Parse Netscape cookies.txt content.

    Format per line: domain, flag, path, secure, expiration, name, value.
    Comment and blank lines are ignored; malformed lines are skipped.
    """
    cookies = []
    for line in text.splitlines():
        if line.startswith(HTTP_ONLY_PREFIX):
            line = line[len(HTTP_ONLY_PREFIX):]
        elif line.startswith("#") or not line.strip():
            continue

        parts = line.rstrip("\r").split("\t")
        if len(parts) < 7:
            continue

        domain, _flag, path, secure, expiration, name, value = parts[:7]
        try:
            expires_seconds = int(expiration)
        except ValueError:
            logger.debug(f"Skipping cookie {name!r} with invalid expiry {expiration!r}")
            continue

        cookies.append(Cookie(
            name=name,
            value=value,
            domain=domain,
            path=path or "/",
            secure=secure.upper() == "TRUE",
            expires=expires_seconds * 1000 if expires_seconds > 0 else None,
        ))

    return cookies


def parse_json_format(items: Any) -> List[Cookie]:
    """
    Parse a JSON array of cookie objects.

    `expirationDate` (seconds, as exported by browser extensions) takes
    precedence over `expires` (milliseconds).
    """
    if not isinstance(items, list):
        raise config_validation("cookies", "JSON must be an array of cookie objects", "JSON array")

    cookies = []
    for item in items:
        if not isinstance(item, dict):
            raise config_validation("cookies", "Every cookie entry must be an object", "JSON object")

        if item.get("expirationDate"):
            expires = float(item["expirationDate"]) * 1000
        elif item.get("expires"):
            expires = float(item["expires"])
        else:
            expires = None

        cookies.append(Cookie(
            name=item.get("name") or "",
            value=item.get("value") or "",
            domain=item.get("domain") or "",
            path=item.get("path") or "/",
            secure=item.get("secure") is not False,
            http_only=item.get("httpOnly") is not False,
            same_site=_normalize_same_site(item.get("sameSite")),
            expires=expires,
        ))

    return cookies


def _normalize_same_site(value: Optional[str]) -> str:
    # Browser exports use "no_restriction", "lax", "strict", "unspecified"
    mapping = {"strict": "Strict", "lax": "Lax", "none": "None", "no_restriction": "None"}
    return mapping.get(str(value).lower(), "Lax") if value else "Lax"


def load_cookies_from_file(file_path: str | Path) -> List[Cookie]:
    """
    Load cookies from a file, auto-detecting JSON or Netscape format.

    Raises:
        PipelineError: FILE_SYSTEM_ERROR if unreadable,
            CONFIG_VALIDATION_ERROR if the JSON is malformed
    """
    path = Path(file_path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise file_system_error("read cookies", str(path), e) from e

    stripped = content.strip()
    if stripped.startswith(("[", "{")):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise config_validation("cookies", f"Failed to parse cookies file: {e}", "JSON array or Netscape cookies.txt") from e
        cookies = parse_json_format(data if isinstance(data, list) else [data])
    else:
        cookies = parse_netscape_format(content)

    logger.info(f"Loaded {len(cookies)} cookies from {path}")
    return cookies


def detect_expired_cookies(cookies: Iterable[Cookie], now_ms: Optional[float] = None) -> List[Cookie]:
    """Cookies with an expiry in the past."""
    now_ms = now_ms if now_ms is not None else time.time() * 1000
    return [cookie for cookie in cookies if cookie.is_expired(now_ms)]


def filter_cookies_by_domain(cookies: Iterable[Cookie], domain: str) -> List[Cookie]:
    """Cookies that apply to `domain` (a host name or URL)."""
    host = urlparse(domain).hostname if "://" in domain else domain
    host = (host or "").lower()

    matched = []
    for cookie in cookies:
        cookie_domain = cookie.domain.lower().lstrip(".")
        if not cookie_domain:
            continue
        if host == cookie_domain or host.endswith("." + cookie_domain):
            matched.append(cookie)
    return matched


def merge_cookies(cookie_lists: Sequence[Iterable[Cookie]]) -> List[Cookie]:
    """Merge cookie lists; later lists override earlier ones per (domain, name)."""
    merged: Dict[tuple, Cookie] = {}
    for cookies in cookie_lists:
        for cookie in cookies:
            merged[(cookie.domain, cookie.name)] = cookie
    return list(merged.values())


def to_browser_format(cookies: Iterable[Cookie]) -> List[Dict[str, Any]]:
    """Cookie dicts as browsers expect them (expiry in seconds)."""
    result = []
    for cookie in cookies:
        data = cookie.to_dict()
        data["expires"] = cookie.expires / 1000 if cookie.expires else None
        result.append(data)
    return result


def save_cookies_to_file(cookies: Iterable[Cookie], file_path: str | Path) -> None:
    """Write cookies as a JSON array (expires in milliseconds)."""
    path = Path(file_path)
    try:
        path.write_text(json.dumps([c.to_dict() for c in cookies], indent=2), encoding="utf-8")
    except OSError as e:
        raise file_system_error("save cookies", str(path), e) from e


async def validate_cookies(
    test_url: str,
    cookies: Sequence[Cookie],
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CookieValidationResult:
    """
    Check cookies by requesting a page with them.

    Invalid when any cookie is expired, the server answers 401/403, or the
    response looks like a login page.
    """
    expired = detect_expired_cookies(cookies)
    if expired:
        return CookieValidationResult(
            valid=False,
            message=f"{len(expired)} cookie(s) have expired",
            expired_cookies=expired,
        )

    cookie_header = "; ".join(f"{c.name}={c.value}" for c in cookies)
    headers = {"User-Agent": HTTP_USER_AGENT}
    if cookie_header:
        headers["Cookie"] = cookie_header

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True) as client:
            response = await client.get(test_url, headers=headers)
    except httpx.HTTPError as e:
        return CookieValidationResult(valid=False, message=f"Failed to validate cookies: {e}")

    if response.status_code in (401, 403):
        return CookieValidationResult(
            valid=False,
            message=f"Authentication failed (HTTP {response.status_code})",
        )

    body = response.text.lower()
    if any(marker in body for marker in LOGIN_PAGE_MARKERS):
        return CookieValidationResult(
            valid=False,
            message="Detected login/authentication page - cookies may be invalid",
        )

    return CookieValidationResult(valid=True, message="Cookies appear to be valid")
