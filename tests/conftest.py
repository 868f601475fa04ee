# tests/conftest.py
"""Gemeinsame Test-Doubles: LLM ohne Netzwerk, fest eingestellte Uhr."""

import sys
sys.path.insert(0, '.')

import threading
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest


class FakeLLM:
    """
    OpenAI-kompatibler Fake-Client.

    `respond` bekommt den User-Prompt und liefert den Antworttext
    (oder wirft eine Exception).
    """

    def __init__(self, respond):
        self.respond = respond
        self.chat = SimpleNamespace(completions=self)
        self.prompts = []
        self._lock = threading.Lock()

    def create(self, model=None, messages=None, **kwargs):
        prompt = messages[-1]["content"]
        with self._lock:
            self.prompts.append(prompt)
        content = self.respond(prompt)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )


class SteppingClock:
    """Jede Abfrage liefert eine Sekunde später als die vorherige."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            value = self.current
            self.current = self.current + self.step
            return value


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def clock():
    return SteppingClock()
