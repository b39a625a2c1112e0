"""Shared pytest fixtures for Counsel Actions tests."""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

# Keep the module-level app from writing into the working directory
os.environ.setdefault("KNOWLEDGE_DIR", tempfile.mkdtemp(prefix="counsel-test-"))

import httpx
import pytest
from fastapi.testclient import TestClient

from counsel.core.config import Settings
from counsel.main import create_app
from counsel.services.knowledge_base import KnowledgeBase
from counsel.services.llm import LLMClient

TEST_API_KEY = "test-key-123"


class FakeLLM:
    """Stand-in for LLMClient returning a canned JSON object or raising."""

    model = "fake-model"

    def __init__(self, response: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.response = response or {}
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    @property
    def is_configured(self) -> bool:
        return True

    async def complete_json(self, system: str, user: str, max_tokens: int = 1200) -> Dict[str, Any]:
        self.calls.append({"system": system, "user": user, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Settings with a known API key and an isolated knowledge directory."""
    return Settings(
        _env_file=None,
        app_env="test",
        api_keys=TEST_API_KEY,
        rate_limit_requests=100,
        rate_limit_window_seconds=60,
        openai_api_key=None,
        knowledge_dir=temp_dir / "knowledge",
        knowledge_chunk_size=40,
        knowledge_chunk_overlap=5,
        max_upload_bytes=64 * 1024,
        public_base_url="https://counsel.example.com/",
        enable_metrics=False,
    )


@pytest.fixture
def knowledge_base(test_settings: Settings) -> KnowledgeBase:
    return KnowledgeBase.from_settings(test_settings)


async def public_resolver(host: str) -> List[str]:
    """Resolve every host to the same public address."""
    return ["93.184.216.34"]


@pytest.fixture
def url_knowledge_base(test_settings: Settings):
    """Build a knowledge base whose URL fetches hit a fake transport.

    Returns:
        Factory taking an httpx handler and an optional resolver
    """
    def factory(handler, resolver=public_resolver) -> KnowledgeBase:
        return KnowledgeBase.from_settings(
            test_settings,
            transport=httpx.MockTransport(handler),
            resolver=resolver,
        )
    return factory


@pytest.fixture
def offline_llm() -> LLMClient:
    """LLM client without an API key, forcing rule-based output."""
    return LLMClient(api_key=None, model="gpt-4o-mini")


@pytest.fixture
def app(test_settings: Settings, knowledge_base: KnowledgeBase, offline_llm: LLMClient):
    return create_app(test_settings, knowledge_base=knowledge_base, llm=offline_llm)


@pytest.fixture
def test_client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def fake_llm_factory():
    """Return the FakeLLM class so tests can build clients with canned output."""
    return FakeLLM


@pytest.fixture
def api_key() -> str:
    return TEST_API_KEY


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {TEST_API_KEY}"}


@pytest.fixture
def sample_strategy_payload() -> Dict[str, Any]:
    return {
        "case_summary": (
            "Tenant withheld rent after the landlord ignored repeated repair requests "
            "for a broken heater during winter."
        ),
        "opponent_statements": [
            "The tenant never gave notice of the defect.",
            "This is clearly an outrageous attempt to avoid paying rent.",
        ],
        "goal": "Avoid eviction and recover repair costs.",
        "jurisdiction": "CA",
        "risk_tolerance": "medium",
    }
