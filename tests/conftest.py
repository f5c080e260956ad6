import json
from pathlib import Path

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from mascot.config import AppSettings, PollingConfig
from mascot.main import create_app
from mascot.registry import LinkRegistry
from tests.fakes import FakeAssistantsClient, FakeClock

SAMPLE_LINKS = [
    {
        "id": "physio-au",
        "title": "Australian Physiotherapy Association",
        "url": "https://choose.physio/",
        "domain": "choose.physio",
        "category": ["physical"],
        "keywords": ["knee", "rehab"],
    },
    {
        "id": "sports-med",
        "title": "Sports Medicine Australia",
        "url": "https://sma.org.au/resources",
        "domain": "sma.org.au",
        "category": ["physical"],
        "keywords": ["injury"],
    },
    {
        "id": "sports-med-2",
        "title": "Sports Medicine Australia fact sheets",
        "url": "https://www.sma.org.au/fact-sheets",
        "domain": "www.sma.org.au",
        "category": ["physical"],
        "keywords": ["knee"],
    },
    {
        "id": "beyond-blue",
        "title": "Beyond Blue",
        "url": "https://www.beyondblue.org.au/",
        "domain": "beyondblue.org.au",
        "category": ["psychological"],
        "keywords": ["anxiety", "stress"],
    },
    {
        "id": "concussion",
        "title": "Concussion in Sport Australia",
        "url": "https://www.concussioninsport.gov.au/",
        "domain": "concussioninsport.gov.au",
        "category": ["brain-health"],
        "keywords": ["concussion", "head knock"],
    },
    {
        "id": "moneysmart",
        "title": "Moneysmart",
        "url": "https://moneysmart.gov.au/",
        "domain": "moneysmart.gov.au",
        "category": ["financial"],
        "keywords": ["budget"],
    },
    {
        "id": "no-url",
        "title": "Offline leaflet",
        "category": ["physical"],
        "keywords": ["knee"],
    },
]


def make_settings(**overrides) -> AppSettings:
    settings = AppSettings(
        openai_api_key="sk-test",
        assistant_id="asst_test",
        openai_base_url="http://assistants.test/v1",
        links_url="/links.json",
        polling=PollingConfig(deadline_s=10.0, initial_delay_ms=700, backoff_factor=1.3, max_delay_ms=2200),
        max_sources=4,
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def links_file(tmp_path: Path) -> Path:
    path = tmp_path / "links.json"
    path.write_text(json.dumps(SAMPLE_LINKS))
    return path


@pytest.fixture
def app_factory(links_file: Path):
    def _factory(
        *,
        fake_client: FakeAssistantsClient | None = None,
        clock: FakeClock | None = None,
        registry: LinkRegistry | None = None,
        **settings_overrides,
    ):
        settings = make_settings(**settings_overrides)
        clock = clock or FakeClock()
        assistants = fake_client or FakeAssistantsClient(clock=clock)
        registry = registry or LinkRegistry(path=str(links_file), clock=clock)
        app = create_app(
            settings,
            assistants_client=assistants,
            registry=registry,
            clock=clock,
            sleep=clock.sleep,
        )
        return app, assistants, clock

    return _factory


@pytest.fixture
async def client(app_factory):
    app, assistants, clock = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.fake_assistants = assistants  # type: ignore[attr-defined]
            http_client.clock = clock  # type: ignore[attr-defined]
            yield http_client
