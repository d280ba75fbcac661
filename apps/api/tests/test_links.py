from __future__ import annotations

from collections.abc import Callable
from urllib.parse import urlencode

import httpx
import pytest

from app.core.errors import UpstreamError, ValidationError
from app.services.sessions import GameLinkResolver, LinkFormat
from app.services.sessions.links import extract_place_id_from_html

ResolverFactory = Callable[[Callable[[httpx.Request], httpx.Response]], GameLinkResolver]


def test_web_games_url_with_slug(offline_resolver: GameLinkResolver) -> None:
    link = offline_resolver.normalize("https://www.roblox.com/games/606849621/Jailbreak")

    assert link.game_ref == 606849621
    assert link.matched_format == LinkFormat.WEB_GAMES
    assert link.canonical_web_url == "https://www.roblox.com/games/606849621"
    assert link.canonical_start_url == "https://www.roblox.com/games/start?placeId=606849621"
    assert link.original_input_url == "https://www.roblox.com/games/606849621/Jailbreak"


def test_normalizing_twice_is_deterministic(offline_resolver: GameLinkResolver) -> None:
    first = offline_resolver.normalize("https://www.roblox.com/games/606849621")
    second = offline_resolver.normalize("https://www.roblox.com/games/606849621")

    assert (first.game_ref, first.matched_format) == (second.game_ref, second.matched_format)


def test_whitespace_trailing_slash_and_missing_scheme(offline_resolver: GameLinkResolver) -> None:
    link = offline_resolver.normalize("   www.roblox.com/games/920587237/   ")

    assert link.game_ref == 920587237
    assert link.matched_format == LinkFormat.WEB_GAMES
    assert link.original_input_url == "www.roblox.com/games/920587237/"


def test_locale_prefixed_web_url(offline_resolver: GameLinkResolver) -> None:
    link = offline_resolver.normalize("https://www.roblox.com/de/games/1537690962/Bee-Swarm")

    assert link.game_ref == 1537690962


def test_start_url_query_parameter(offline_resolver: GameLinkResolver) -> None:
    link = offline_resolver.normalize("https://www.roblox.com/games/start?placeId=2753915549&launchData=x")

    assert link.game_ref == 2753915549
    assert link.matched_format == LinkFormat.WEB_START


def test_deep_link_protocol(offline_resolver: GameLinkResolver) -> None:
    link = offline_resolver.normalize("roblox://placeId=4924922222")

    assert link.game_ref == 4924922222
    assert link.matched_format == LinkFormat.PROTOCOL


def test_shortlink_with_embedded_target(offline_resolver: GameLinkResolver) -> None:
    raw = "https://ro.blox.com/Ebh5?af_web_dp=https%3A%2F%2Fwww.roblox.com%2Fgames%2F606849621%2FJailbreak&af_dp=roblox%3A%2F%2F"
    link = offline_resolver.normalize(raw)

    assert link.game_ref == 606849621
    assert link.matched_format == LinkFormat.SHORTLINK_PARAM


def test_shortlink_redirect_is_followed(mock_resolver: ResolverFactory) -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(f"{request.method} {request.url.host}")
        if request.url.host == "ro.blox.com":
            return httpx.Response(302, headers={"Location": "https://www.roblox.com/games/185655149/Bloxburg"})
        return httpx.Response(200)

    link = mock_resolver(handler).normalize("https://ro.blox.com/Ebh5")

    assert link.game_ref == 185655149
    assert link.matched_format == LinkFormat.SHORTLINK_REDIRECT
    assert seen[0] == "HEAD ro.blox.com"


def test_shortlink_redirect_falls_back_to_get_on_405(mock_resolver: ResolverFactory) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "ro.blox.com" and request.method == "HEAD":
            return httpx.Response(405)
        if request.url.host == "ro.blox.com":
            return httpx.Response(302, headers={"Location": "https://www.roblox.com/games/start?placeId=77"})
        return httpx.Response(200)

    link = mock_resolver(handler).normalize("https://ro.blox.com/abc")

    assert link.game_ref == 77


def test_shortlink_network_failure_is_upstream_error(mock_resolver: ResolverFactory) -> None:
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamError) as exc_info:
        mock_resolver(handler).normalize("https://ro.blox.com/Ebh5")

    assert exc_info.value.code == "LINK_RESOLUTION_FAILED"
    assert len(attempts) == 2
    assert "timed out" not in exc_info.value.message


def test_share_link_reads_meta_tag(mock_resolver: ResolverFactory) -> None:
    requested: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url)
        html = '<html><head><meta content="6516141723" name="roblox:start_place_id"></head></html>'
        return httpx.Response(200, text=html)

    link = mock_resolver(handler).normalize("https://www.roblox.com/share?code=abc123&type=ExperienceDetails")

    assert link.game_ref == 6516141723
    assert link.matched_format == LinkFormat.SHARE_LINK
    assert requested[0].path == "/share-links"
    assert requested[0].params["code"] == "abc123"


def test_share_link_without_meta_tag_is_upstream_error(mock_resolver: ResolverFactory) -> None:
    resolver = mock_resolver(lambda request: httpx.Response(200, text="<html></html>"))

    with pytest.raises(UpstreamError):
        resolver.normalize("https://www.roblox.com/share-links?code=abc&type=Server")


@pytest.mark.parametrize(
    "raw",
    ["", "   ", "not a url", "https://example.com/games/123", "ftp://www.roblox.com/games/1"],
)
def test_unrecognised_input_is_validation_error(offline_resolver: GameLinkResolver, raw: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        offline_resolver.normalize(raw)

    assert exc_info.value.code == "INVALID_GAME_LINK"


@pytest.mark.parametrize(
    "raw",
    ["https://www.roblox.com/home", "https://www.roblox.com/games/start", "roblox://experiences/start"],
)
def test_recognised_host_without_identifier(offline_resolver: GameLinkResolver, raw: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        offline_resolver.normalize(raw)

    assert exc_info.value.code == "GAME_ID_MISSING"


def _wrap_in_shortlinks(target: str, levels: int) -> str:
    for index in range(levels):
        target = f"https://ro.blox.com/s{index}?" + urlencode({"af_web_dp": target})
    return target


def test_nested_shortlinks_within_depth_resolve(offline_resolver: GameLinkResolver) -> None:
    link = offline_resolver.normalize(_wrap_in_shortlinks("https://www.roblox.com/games/1", 3))

    assert link.game_ref == 1
    assert link.matched_format == LinkFormat.SHORTLINK_PARAM


def test_nested_shortlinks_beyond_depth_are_rejected(mock_resolver: ResolverFactory) -> None:
    resolver = mock_resolver(lambda request: httpx.Response(200))

    with pytest.raises(ValidationError):
        resolver.normalize(_wrap_in_shortlinks("https://www.roblox.com/games/1", 4))


def test_extract_place_id_tolerates_attribute_order() -> None:
    assert extract_place_id_from_html('<meta name="roblox:start_place_id" content="42">') == 42
    assert extract_place_id_from_html("<meta content='43' property='roblox:start_place_id' />") == 43
    assert extract_place_id_from_html('<meta name="description" content="44">') is None
