"""Shared fixtures: deterministic time and scripted transports."""

import base64
from typing import Any

import pytest

from gemini_resilience.audit import InMemoryAuditSink


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Async sleep that records delays and advances a FakeClock."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)


class ScriptedTransport:
    """Transport that replays a script of responses and exceptions.

    The last script entry repeats once the script is exhausted.
    """

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.calls: list[tuple[str, dict[str, Any], float]] = []

    async def send(self, endpoint: str, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        self.calls.append((endpoint, payload, timeout))
        index = min(len(self.calls), len(self.script)) - 1
        step = self.script[index]
        if isinstance(step, BaseException):
            raise step
        return step


def text_response(text: str) -> dict[str, Any]:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def image_response(data: bytes, mime_type: str = "image/png") -> dict[str, Any]:
    return {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"text": "Here is your image"},
                        {
                            "inlineData": {
                                "mimeType": mime_type,
                                "data": base64.b64encode(data).decode("ascii"),
                            }
                        },
                    ]
                }
            }
        ]
    }


@pytest.fixture
def clock():
    return FakeClock(start=1000.0)


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()
