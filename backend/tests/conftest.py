"""
Shared fixtures for the backend test suite.

Pipeline tests never touch the network, AWS or ffmpeg; see tests/fakes.py.
"""

import sys
from pathlib import Path

import pytest

# Add backend directory to Python path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from dependencies import build_services
from services.record_store import InMemoryRecordStore
from services.usage_counter import UsageCounter
from tests.fakes import FakeBlobStore, FakeFetcher, FakeGenerativeClient, FakeStitcher
from ugc_schemas import Product


@pytest.fixture
def memory_store():
    return InMemoryRecordStore()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def genai():
    return FakeGenerativeClient()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def usage_counter():
    return UsageCounter(history_limit=100)


@pytest.fixture
def sample_product():
    return Product(
        id="prod-1",
        name="GlowSerum",
        description="Vitamin C serum that brightens skin in two weeks.",
        category="Beauty",
        price=29.99,
        imageUrl="https://cdn.example.com/glowserum.png",
    )


@pytest.fixture
def stitcher():
    return FakeStitcher()


@pytest.fixture
def services(memory_store, blob_store, genai, fetcher, stitcher, usage_counter):
    """Full component graph over in-memory storage and fake providers."""
    return build_services(
        store=memory_store,
        blob_store=blob_store,
        generative_client=genai,
        fetcher=fetcher,
        stitcher=stitcher,
        usage_counter=usage_counter,
    )
