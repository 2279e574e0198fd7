"""
Local generation adapter: Ollama call shape and error mapping.

We install a fake `ollama` module so no runtime is needed; the adapter
imports it lazily inside `generate`.
"""
from __future__ import annotations

import importlib
import sys
from types import SimpleNamespace

import pytest

from backend.archive.adapters.ports import (
    GenerationPermanentError,
    GenerationRequest,
    GenerationTransientError,
    ImagePart,
)

pytestmark = pytest.mark.anyio("asyncio")


class _ResponseError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class _FakeAsyncClient:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.calls: list[dict] = []

    async def chat(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def _install_fake_ollama(monkeypatch: pytest.MonkeyPatch, outcome) -> tuple[_FakeAsyncClient, list[dict]]:
    client = _FakeAsyncClient(outcome)
    inits: list[dict] = []

    def _factory(**kwargs):
        inits.append(kwargs)
        return client

    fake = SimpleNamespace(AsyncClient=_factory, ResponseError=_ResponseError)
    monkeypatch.setitem(sys.modules, "ollama", fake)
    return client, inits


def _request() -> GenerationRequest:
    return GenerationRequest(
        system_prompt="be brief",
        images=(ImagePart(data_b64="AAAA"), ImagePart(data_b64="BBBB", mime_type="image/png")),
        text="Generate report for exhibits 1 to 2.",
        max_tokens=4000,
        first_exhibit=1,
        last_exhibit=2,
    )


def _adapter(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OLLAMA_BASE_URL", "http://ollama.test:11434")
    monkeypatch.setenv("AI_TIMEOUT_REPORT", "42")
    mod = importlib.import_module("backend.archive.adapters.local_generation")
    return mod.build(model="vision-model:1b")


async def test_chat_call_shape(monkeypatch: pytest.MonkeyPatch) -> None:
    client, inits = _install_fake_ollama(monkeypatch, {"message": {"content": "  **EXHIBIT 1**  "}})
    adapter = _adapter(monkeypatch)

    text = await adapter.generate(_request())

    assert text == "**EXHIBIT 1**"
    assert inits == [{"host": "http://ollama.test:11434", "timeout": 42}]
    (call,) = client.calls
    assert call["model"] == "vision-model:1b"
    system, user = call["messages"]
    assert system == {"role": "system", "content": "be brief"}
    assert user["images"] == ["AAAA", "BBBB"]
    assert user["content"] == "Generate report for exhibits 1 to 2."
    assert call["options"]["num_predict"] == 4000


async def test_attribute_style_response_and_code_fence(monkeypatch: pytest.MonkeyPatch) -> None:
    response = SimpleNamespace(message=SimpleNamespace(content="```markdown\n**EXHIBIT 1**\n```"))
    _install_fake_ollama(monkeypatch, response)
    assert await _adapter(monkeypatch).generate(_request()) == "**EXHIBIT 1**"


@pytest.mark.parametrize(
    "outcome, expected",
    [
        (TimeoutError("slow"), GenerationTransientError),
        (ConnectionError("refused"), GenerationTransientError),
        (_ResponseError("busy", 503), GenerationTransientError),
        (_ResponseError("rate", 429), GenerationTransientError),
        (_ResponseError("model not found", 404), GenerationPermanentError),
        (_ResponseError("bad request", 400), GenerationPermanentError),
        ({"message": {"content": "   "}}, GenerationTransientError),
    ],
)
async def test_error_mapping(monkeypatch: pytest.MonkeyPatch, outcome, expected) -> None:
    _install_fake_ollama(monkeypatch, outcome)
    with pytest.raises(expected):
        await _adapter(monkeypatch).generate(_request())


async def test_stub_adapter_is_deterministic() -> None:
    mod = importlib.import_module("backend.archive.adapters.stub_generation")
    adapter = mod.build(model="ignored")
    text = await adapter.generate(_request())
    assert text.startswith("**EXHIBIT 1**")
    assert "**EXHIBIT 2**" in text
    extraction = GenerationRequest(system_prompt="", images=(), text="", max_tokens=10)
    assert await adapter.generate(extraction) == "No text detected"
