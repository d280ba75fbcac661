"""Game link normalisation.

Turns anything a player might paste (web URL, launcher URL, app deep link,
marketing shortlink or mobile share link) into a canonical place id. Pure
parsing where possible; the two formats that hide the id behind the network
(shortlink redirect, share page) go through an ``httpx.Client`` with an
explicit timeout and a small fixed number of attempts.

Results are never cached here. Different inputs can land on the same place
and the same shortlink can be repointed, so a cache keyed on the raw input
would be wrong.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import SplitResult, parse_qs, unquote, urlencode, urlsplit

import httpx

from app.core.config import settings
from app.core.errors import UpstreamError, ValidationError
from app.services.sessions.entities import canonical_start_url, canonical_web_url

logger = logging.getLogger("squadlink.api.links")

WEB_HOSTS = frozenset({"roblox.com", "www.roblox.com", "web.roblox.com", "m.roblox.com"})
SHORTLINK_HOSTS = frozenset({"ro.blox.com"})
DEEP_LINK_SCHEME = "roblox"
SHORTLINK_TARGET_PARAMS = ("af_web_dp", "af_dp", "deep_link_value")
SHARE_PATHS = frozenset({"/share", "/share-links"})

_GAMES_PATH_RE = re.compile(r"^/(?:[a-z]{2}(?:-[a-z]{2})?/)?games/(\d+)(?:/|$)", re.IGNORECASE)
_START_PATH_RE = re.compile(r"^/(?:[a-z]{2}(?:-[a-z]{2})?/)?games/start$", re.IGNORECASE)
_DEEP_LINK_PLACE_RE = re.compile(r"placeid=(\d+)", re.IGNORECASE)
_META_TAG_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_META_NAME_RE = re.compile(r"""\b(?:name|property)\s*=\s*["']roblox:start_place_id["']""", re.IGNORECASE)
_META_CONTENT_RE = re.compile(r"""\bcontent\s*=\s*["'](\d+)["']""", re.IGNORECASE)


class LinkFormat(str, Enum):
    WEB_GAMES = "web_games"
    WEB_START = "web_start"
    PROTOCOL = "protocol"
    SHORTLINK_PARAM = "roblox_shortlink_param"
    SHORTLINK_REDIRECT = "roblox_shortlink_redirect"
    SHARE_LINK = "share_link"


@dataclass(frozen=True, slots=True)
class NormalizedGameLink:
    game_ref: int
    canonical_web_url: str
    canonical_start_url: str
    original_input_url: str
    matched_format: LinkFormat


def _positive_int(raw: str | None) -> int | None:
    if raw is None or not raw.isdigit():
        return None
    value = int(raw)
    return value if value > 0 else None


def _first_query_value(parts: SplitResult, key: str) -> str | None:
    params = parse_qs(parts.query)
    for name, values in params.items():
        if name.lower() == key.lower() and values:
            return values[0].strip()
    return None


def _prepare(raw: str) -> str:
    text = raw.strip()
    if not text:
        raise ValidationError("A game link is required", code="INVALID_GAME_LINK")
    if "://" not in text and re.match(r"^(?:[\w-]+\.)*(?:roblox\.com|blox\.com)(?:/|$)", text, re.IGNORECASE):
        text = f"https://{text}"
    return text


def _split(text: str) -> SplitResult:
    try:
        parts = urlsplit(text)
    except ValueError as exc:
        raise ValidationError("Invalid URL format", code="INVALID_GAME_LINK") from exc
    if not parts.scheme:
        raise ValidationError("Invalid URL format", code="INVALID_GAME_LINK")
    return parts


def _path(parts: SplitResult) -> str:
    path = parts.path.rstrip("/")
    return path or "/"


def _from_web_games(parts: SplitResult) -> int | None:
    match = _GAMES_PATH_RE.match(_path(parts))
    return _positive_int(match.group(1)) if match else None


def _from_web_start(parts: SplitResult) -> int | None:
    if not _START_PATH_RE.match(_path(parts)):
        return None
    return _positive_int(_first_query_value(parts, "placeId"))


def _from_web_url(parts: SplitResult) -> tuple[int, LinkFormat] | None:
    place_id = _from_web_games(parts)
    if place_id is not None:
        return place_id, LinkFormat.WEB_GAMES
    place_id = _from_web_start(parts)
    if place_id is not None:
        return place_id, LinkFormat.WEB_START
    return None


def extract_place_id_from_html(html: str) -> int | None:
    for tag in _META_TAG_RE.findall(html):
        if not _META_NAME_RE.search(tag):
            continue
        content = _META_CONTENT_RE.search(tag)
        if content:
            return _positive_int(content.group(1))
    return None


class GameLinkResolver:
    def __init__(
        self,
        http_client: httpx.Client | None = None,
        *,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        max_depth: int | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or settings.link_resolver_timeout_seconds
        self.max_attempts = max(1, max_attempts or settings.link_resolver_max_attempts)
        self.max_depth = max(1, max_depth or settings.link_resolver_max_depth)
        self._http_client = http_client

    def _client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={"User-Agent": "squadlink-link-resolver/1.0"},
            )
        return self._http_client

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def normalize(self, raw_input: str) -> NormalizedGameLink:
        original = raw_input.strip() if isinstance(raw_input, str) else ""
        place_id, matched = self._resolve(_prepare(original), depth=0)
        logger.info(
            "links.normalized",
            extra={"game_ref": place_id, "matched_format": matched.value},
        )
        return NormalizedGameLink(
            game_ref=place_id,
            canonical_web_url=canonical_web_url(place_id),
            canonical_start_url=canonical_start_url(place_id),
            original_input_url=original,
            matched_format=matched,
        )

    def _resolve(self, text: str, *, depth: int) -> tuple[int, LinkFormat]:
        if depth > self.max_depth:
            raise ValidationError("Game link redirects too many times", code="INVALID_GAME_LINK")

        parts = _split(text)
        scheme = parts.scheme.lower()
        host = (parts.hostname or "").lower()

        if scheme in {"http", "https"} and host in WEB_HOSTS:
            found = _from_web_url(parts)
            if found is not None:
                return found
            if _path(parts) in SHARE_PATHS:
                return self._from_share_link(parts), LinkFormat.SHARE_LINK
            raise ValidationError("Unable to find a game id in this link", code="GAME_ID_MISSING")

        if scheme == DEEP_LINK_SCHEME:
            match = _DEEP_LINK_PLACE_RE.search(text)
            place_id = _positive_int(match.group(1)) if match else None
            if place_id is None:
                raise ValidationError("Unable to find a game id in this link", code="GAME_ID_MISSING")
            return place_id, LinkFormat.PROTOCOL

        if scheme in {"http", "https"} and host in SHORTLINK_HOSTS:
            return self._from_shortlink(parts, text, depth=depth)

        raise ValidationError("Unsupported game link", code="INVALID_GAME_LINK")

    def _from_shortlink(self, parts: SplitResult, text: str, *, depth: int) -> tuple[int, LinkFormat]:
        for param in SHORTLINK_TARGET_PARAMS:
            target = _first_query_value(parts, param)
            if not target:
                continue
            try:
                place_id, _ = self._resolve(_prepare(unquote(target)), depth=depth + 1)
            except ValidationError:
                continue
            return place_id, LinkFormat.SHORTLINK_PARAM

        final_url = self._follow_redirects(text)
        if final_url.rstrip("/") == text.rstrip("/"):
            raise ValidationError("Shortlink does not point to a game", code="GAME_ID_MISSING")
        place_id, _ = self._resolve(final_url, depth=depth + 1)
        return place_id, LinkFormat.SHORTLINK_REDIRECT

    def _from_share_link(self, parts: SplitResult) -> int:
        code = _first_query_value(parts, "code")
        link_type = _first_query_value(parts, "type")
        if not code or not link_type:
            raise ValidationError("Share link is missing its code", code="GAME_ID_MISSING")

        canonical = "https://www.roblox.com/share-links?" + urlencode({"code": code, "type": link_type})
        html = self._fetch_page(canonical)
        place_id = extract_place_id_from_html(html)
        if place_id is None:
            raise UpstreamError("Could not resolve the shared game", code="LINK_RESOLUTION_FAILED")
        return place_id

    def _request(self, method: str, url: str) -> httpx.Response:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self._client().request(method, url, follow_redirects=True, timeout=self.timeout_seconds)
            except httpx.HTTPError as exc:
                last_error = exc
                logger.warning(
                    "links.request_failed",
                    extra={"method": method, "error": type(exc).__name__, "result": {"attempt": attempt}},
                )
                continue
            if response.status_code >= 500:
                last_error = httpx.HTTPStatusError(
                    f"status {response.status_code}",
                    request=response.request,
                    response=response,
                )
                continue
            return response
        raise UpstreamError("Could not resolve the game link", code="LINK_RESOLUTION_FAILED") from last_error

    def _follow_redirects(self, url: str) -> str:
        response = self._request("HEAD", url)
        if response.status_code == 405:
            response = self._request("GET", url)
        return str(response.url)

    def _fetch_page(self, url: str) -> str:
        response = self._request("GET", url)
        if response.status_code >= 400:
            raise UpstreamError("Could not resolve the shared game", code="LINK_RESOLUTION_FAILED")
        return response.text
