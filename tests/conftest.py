"""
Shared fixtures: candidate sets, a fake LLM client and a fake clock
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from buddy.models import Candidate


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_llm_client(content=None, delay: float = 0, exc: Exception = None):
    """Object shaped like AsyncOpenAI: client.chat.completions.create(...)"""

    async def create(**kwargs):
        if delay:
            await asyncio.sleep(delay)
        if exc is not None:
            raise exc
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    completions = SimpleNamespace(create=AsyncMock(side_effect=create))
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def password_candidates():
    """Menu / Settings / Billing, text only"""
    return [
        Candidate(id="a", text="Menu"),
        Candidate(id="b", text="Settings"),
        Candidate(id="c", text="Billing"),
    ]


@pytest.fixture
def billing_candidates():
    return [
        Candidate(id="a", text="Menu", clickable=False),
        Candidate(id="b", text="Settings"),
        Candidate(id="c", text="Billing"),
        Candidate(id="d", text="Billing history"),
    ]


@pytest.fixture
def llm_client():
    """Factory fixture: llm_client(content=..., delay=..., exc=...)"""
    return make_llm_client
