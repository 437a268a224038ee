import asyncio
import math
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

from fakes import DIM
from semantic_search.config import ConfigurationError
from semantic_search.models.chunk import normalize_text
from semantic_search.utils import embeddings as embeddings_module
from semantic_search.utils.embeddings import EmbeddingService, estimate_tokens


class _FakeEmbeddingsAPI:
    def __init__(self, responses):
        self.responses = list(responses)
        self.inputs = []

    async def create(self, input, model):
        self.inputs.append(input)
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class _FakeAsyncOpenAI:
    responses = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.embeddings = _FakeEmbeddingsAPI(type(self).responses)
        self.closed = False

    async def close(self):
        self.closed = True


def _response(vector):
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector)])


def _connection_error():
    return APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/embeddings"))


def _openai_service(monkeypatch, settings, responses, **overrides):
    _FakeAsyncOpenAI.responses = responses
    monkeypatch.setattr(embeddings_module, "AsyncOpenAI", _FakeAsyncOpenAI)
    configured = settings.model_copy(
        update={"embedding_provider": "openai", "openai_api_key": "sk-test", **overrides}
    )
    return EmbeddingService(configured)


def test_normalize_text_collapses_whitespace():
    assert normalize_text("  def  f():\n\t\treturn 1\r\n") == "def f(): return 1"


def test_estimate_tokens():
    assert estimate_tokens("x" * 30, chars_per_token=3) == 10
    assert estimate_tokens("abc", chars_per_token=0) == 3


def test_mock_embeddings_are_deterministic_unit_vectors(settings):
    service = EmbeddingService(settings)

    first = asyncio.run(service.embed("def add(a, b): return a + b"))
    second = asyncio.run(service.embed("def add(a, b):\n    return a + b"))

    assert first == second
    assert len(first) == DIM
    assert math.isclose(math.sqrt(sum(v * v for v in first)), 1.0, rel_tol=1e-5)


def test_empty_input_returns_none(settings):
    service = EmbeddingService(settings)

    assert asyncio.run(service.embed("")) is None
    assert asyncio.run(service.embed("   \n\t ")) is None


def test_prepare_truncates_to_provider_input_limit(settings):
    service = EmbeddingService(
        settings.model_copy(update={"embedding_max_tokens": 5, "embedding_chars_per_token": 2})
    )

    assert service.prepare("a " * 50) == "a a a a a "[:10]
    assert len(service.prepare("x" * 100)) == 10


def test_openai_provider_requires_api_key(settings):
    with pytest.raises(ConfigurationError):
        EmbeddingService(settings.model_copy(update={"embedding_provider": "openai", "openai_api_key": None}))


def test_openai_embedding_success(monkeypatch, settings):
    service = _openai_service(monkeypatch, settings, [_response([0.5] * DIM)])

    vector = asyncio.run(service.embed("def   f():   pass"))

    assert vector == [0.5] * DIM
    assert service.openai_client.embeddings.inputs == ["def f(): pass"]
    assert service.openai_client.kwargs["max_retries"] == 0


def test_transient_error_is_retried(monkeypatch, settings):
    service = _openai_service(
        monkeypatch,
        settings,
        [_connection_error(), _response([1.0] * DIM)],
        embedding_max_retries=2,
    )

    assert asyncio.run(service.embed("query")) == [1.0] * DIM
    assert len(service.openai_client.embeddings.inputs) == 2


def test_exhausted_retries_return_none(monkeypatch, settings):
    service = _openai_service(monkeypatch, settings, [_connection_error()], embedding_max_retries=1)

    assert asyncio.run(service.embed("query")) is None


def test_wrong_dimension_returns_none(monkeypatch, settings):
    service = _openai_service(monkeypatch, settings, [_response([0.1] * (DIM + 1))])

    assert asyncio.run(service.embed("query")) is None


def test_malformed_response_returns_none(monkeypatch, settings):
    service = _openai_service(
        monkeypatch,
        settings,
        [SimpleNamespace(data=[]), SimpleNamespace(data=[SimpleNamespace(embedding=["x"] * DIM)])],
    )

    assert asyncio.run(service.embed("first")) is None
    assert asyncio.run(service.embed("second")) is None


def test_embed_many_preserves_order(settings):
    service = EmbeddingService(settings)
    texts = ["alpha beta", "", "gamma", "delta epsilon zeta"]

    async def _run():
        batch = await service.embed_many(texts)
        single = [await service.embed(t) for t in texts]
        return batch, single

    batch, single = asyncio.run(_run())

    assert batch == single
    assert batch[1] is None
    assert asyncio.run(service.embed_many([])) == []


def test_close_releases_client(monkeypatch, settings):
    service = _openai_service(monkeypatch, settings, [])

    asyncio.run(service.close())

    assert service.openai_client.closed
