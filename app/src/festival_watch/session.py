import base64
import json
import logging
import os
from pathlib import Path
from typing import Any, List

_COOKIE_FIELDS = ("name", "value", "url", "domain", "path", "expires", "httpOnly", "secure", "sameSite")
_SAME_SITE = {
    "strict": "Strict",
    "lax": "Lax",
    "none": "None",
    "no_restriction": "None",
}


class CookieLoadError(RuntimeError):
    pass


def normalize_cookie(raw: dict) -> dict | None:
    """Coerce a browser-extension cookie export into Playwright's shape."""
    if not raw.get("name") or "value" not in raw:
        return None
    cookie: dict[str, Any] = {k: raw[k] for k in _COOKIE_FIELDS if raw.get(k) is not None}
    if "expires" not in cookie and raw.get("expirationDate") is not None:
        cookie["expires"] = float(raw["expirationDate"])
    if raw.get("session") is True:
        cookie.pop("expires", None)
    same_site = _SAME_SITE.get(str(raw.get("sameSite") or "").lower())
    if same_site:
        cookie["sameSite"] = same_site
    else:
        cookie.pop("sameSite", None)
    if "url" not in cookie:
        cookie.setdefault("path", "/")
        if "domain" not in cookie:
            return None
    return cookie


def parse_cookies(data: Any) -> List[dict]:
    if isinstance(data, dict) and isinstance(data.get("cookies"), list):
        data = data["cookies"]
    if not isinstance(data, list):
        raise CookieLoadError("cookies must be a JSON list")
    cookies = [c for c in (normalize_cookie(item) for item in data if isinstance(item, dict)) if c]
    if not cookies:
        raise CookieLoadError("no usable cookies found")
    return cookies


def load_cookies(cookies_path: Path) -> List[dict]:
    """Session cookies from COOKIES_JSON_BASE64, COOKIES_JSON, or a file, in that order."""
    logger = logging.getLogger(__name__)

    encoded = os.getenv("COOKIES_JSON_BASE64", "").strip()
    if encoded:
        try:
            data = json.loads(base64.b64decode(encoded).decode("utf-8"))
        except Exception as exc:
            raise CookieLoadError(f"COOKIES_JSON_BASE64 is not valid base64 JSON: {exc}") from exc
        cookies = parse_cookies(data)
        logger.info("cookies_loaded source=COOKIES_JSON_BASE64 count=%s", len(cookies))
        return cookies

    plain = os.getenv("COOKIES_JSON", "").strip()
    if plain:
        try:
            data = json.loads(plain)
        except Exception as exc:
            raise CookieLoadError(f"COOKIES_JSON is not valid JSON: {exc}") from exc
        cookies = parse_cookies(data)
        logger.info("cookies_loaded source=COOKIES_JSON count=%s", len(cookies))
        return cookies

    if not cookies_path.exists():
        raise CookieLoadError(
            f"{cookies_path} not found and neither COOKIES_JSON nor COOKIES_JSON_BASE64 is set"
        )
    try:
        data = json.loads(cookies_path.read_text("utf-8"))
    except Exception as exc:
        raise CookieLoadError(f"could not read {cookies_path}: {exc}") from exc
    cookies = parse_cookies(data)
    logger.info("cookies_loaded source=file path=%s count=%s", cookies_path, len(cookies))
    return cookies
