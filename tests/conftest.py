import pytest

from leadsync.models import Actor, Role
from leadsync.pipelines import AMA, PipelineConfig
from leadsync.store import InMemoryLeadStore

# 2024-03-10T00:00:00Z in epoch millis; leads are ingested at BASE_MS + n minutes.
BASE_MS = 1710028800000


@pytest.fixture(autouse=True)
def _safe_test_config(monkeypatch):
    """Force deterministic, offline-safe config for tests.

    The repo loads .env on import; these overrides prevent real network calls
    (Twilio), real databases and slow inter-chunk sleeps.
    """
    from leadsync.config import config, Config

    overrides = {
        # Disable Twilio credentials so the dry-run notifier is used
        # unless a test explicitly overrides.
        "TWILIO_ACCOUNT_SID": "",
        "TWILIO_AUTH_TOKEN": "",
        "TWILIO_WHATSAPP_FROM": "",
        # Keep endpoints accessible in tests unless a test opts out.
        "API_KEY": "",
        "LEAD_STORE_BACKEND": "memory",
        "BATCH_CHUNK_DELAY_SECONDS": 0.0,
        "BATCH_MAX_RETRIES": 0,
        "FILTER_DEBOUNCE_SECONDS": 0.01,
        "SEARCH_DEBOUNCE_SECONDS": 0.01,
    }
    for name, value in overrides.items():
        monkeypatch.setattr(Config, name, value, raising=False)
        # Keep the instance in sync for any code that reads instance attributes directly.
        monkeypatch.setattr(config, name, value, raising=False)

    return config


def make_doc(pipeline: PipelineConfig = AMA, minute: int = 0, **fields) -> dict:
    """Store document for `pipeline` from logical lead fields."""
    fields.setdefault("ingested_at", BASE_MS + minute * 60_000)
    return pipeline.to_document(fields)


def make_store(pipeline: PipelineConfig = AMA, docs=None, **kwargs) -> InMemoryLeadStore:
    return InMemoryLeadStore(pipeline.collection, documents=docs or {}, **kwargs)


@pytest.fixture
def admin():
    return Actor(name="Meera", role=Role.ADMIN, id="u-admin")


@pytest.fixture
def overlord():
    return Actor(name="Vikram", role=Role.OVERLORD, id="u-overlord")


@pytest.fixture
def agent():
    return Actor(name="Priya", role=Role.SALES, id="u-priya")


@pytest.fixture
def other_agent():
    return Actor(name="Rahul", role=Role.SALES, id="u-rahul")


@pytest.fixture
def doc():
    """Factory: store document from logical lead fields."""
    return make_doc


@pytest.fixture
def store_factory():
    """Factory: in-memory store seeded with {id: document}."""
    return make_store
