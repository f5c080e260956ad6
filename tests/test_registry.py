import json

import httpx
import pytest
import respx
from httpx import Response

from mascot.errors import RegistryLoadError
from mascot.registry import LinkRegistry, parse_registry
from tests.conftest import SAMPLE_LINKS
from tests.fakes import FakeClock

LINKS_URL = "http://widget.test/links.json"


@pytest.mark.asyncio
async def test_relative_url_resolves_against_origin_and_caches():
    clock = FakeClock()
    registry = LinkRegistry("/links.json", ttl_s=60, clock=clock)
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            route = respx_mock.get(LINKS_URL).mock(return_value=Response(200, json=SAMPLE_LINKS))
            first = await registry.load("http://widget.test/")
            second = await registry.load("http://widget.test/")
            assert route.call_count == 1
            assert [e.id for e in first] == [e.id for e in second]
            assert len(first) == len(SAMPLE_LINKS)
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_ttl_expiry_revalidates_with_etag():
    clock = FakeClock()
    registry = LinkRegistry(LINKS_URL, ttl_s=60, clock=clock)
    seen_headers = []
    try:
        with respx.mock(assert_all_called=True) as respx_mock:

            def handler(request):
                seen_headers.append(request.headers.get("if-none-match"))
                if request.headers.get("if-none-match") == '"v1"':
                    return Response(304)
                return Response(200, json=SAMPLE_LINKS, headers={"ETag": '"v1"'})

            route = respx_mock.get(LINKS_URL).mock(side_effect=handler)
            await registry.load()
            clock.advance(61)
            entries = await registry.load()
            assert route.call_count == 2
            assert seen_headers == [None, '"v1"']
            assert len(entries) == len(SAMPLE_LINKS)
            assert registry.is_fresh()
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_stale_snapshot_served_when_refresh_fails():
    clock = FakeClock()
    registry = LinkRegistry(LINKS_URL, ttl_s=60, clock=clock)
    try:
        with respx.mock() as respx_mock:
            respx_mock.get(LINKS_URL).mock(
                side_effect=[Response(200, json=SAMPLE_LINKS), httpx.ConnectError("down")]
            )
            await registry.load()
            clock.advance(120)
            entries = await registry.load()
            assert len(entries) == len(SAMPLE_LINKS)
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_first_load_failure_raises():
    registry = LinkRegistry(LINKS_URL)
    try:
        with respx.mock() as respx_mock:
            respx_mock.get(LINKS_URL).mock(return_value=Response(500, text="boom"))
            with pytest.raises(RegistryLoadError):
                await registry.load()
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_relative_url_without_origin_raises():
    registry = LinkRegistry("/links.json")
    try:
        with pytest.raises(RegistryLoadError):
            await registry.load()
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_file_source(links_file):
    registry = LinkRegistry(path=str(links_file))
    try:
        entries = await registry.load()
        assert entries[0].id == "physio-au"
    finally:
        await registry.close()


@pytest.mark.asyncio
async def test_missing_file_raises(tmp_path):
    registry = LinkRegistry(path=str(tmp_path / "nope.json"))
    try:
        with pytest.raises(RegistryLoadError):
            await registry.load()
    finally:
        await registry.close()


def test_parse_registry_skips_bad_rows_and_repeated_ids():
    rows = [
        {"id": "a", "title": "A", "url": "https://a.org", "category": "physical"},
        {"id": "a", "title": "A again", "url": "https://a2.org"},
        {"title": "no id"},
        "not a dict",
        {"id": 7, "title": "Numeric", "url": "https://n.org", "keywords": None},
    ]
    entries = parse_registry(rows)
    assert [e.id for e in entries] == ["a", "7"]
    assert entries[0].category == ["physical"]
    assert entries[1].keywords == []


def test_parse_registry_rejects_non_list():
    with pytest.raises(RegistryLoadError):
        parse_registry(json.loads('{"oops": true}'))
