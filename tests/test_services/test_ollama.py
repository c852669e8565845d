"""Tests for the Ollama HTTP client."""

from __future__ import annotations

import json

import httpx
import pytest

from aicollab.exceptions import (
    ModelNotFound,
    NoModelSelected,
    RequestFailed,
    ResponseParseError,
    ServiceUnavailable,
)
from aicollab.services.ollama import GenerationOptions, OllamaService

TAGS = {
    "models": [
        {"name": "llama3:latest", "size": 4_700_000_000, "details": {"family": "llama", "parameter_size": "8B"}},
        {"name": "codellama:7b", "size": 3_800_000_000},
    ]
}


def _ndjson(*events: dict) -> bytes:
    return "\n".join(json.dumps(e) for e in events).encode() + b"\n"


def _service(handler) -> OllamaService:
    return OllamaService(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


class TestModels:
    @pytest.mark.asyncio
    async def test_list_models(self):
        svc = _service(lambda request: httpx.Response(200, json=TAGS))
        models = await svc.list_models()
        assert [m.name for m in models] == ["llama3:latest", "codellama:7b"]
        assert models[0].family == "llama"
        assert models[0].parameter_size == "8B"

    @pytest.mark.asyncio
    async def test_list_models_is_cached(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(200, json=TAGS)

        svc = _service(handler)
        await svc.list_models()
        await svc.list_models()
        assert calls == ["/api/tags"]
        await svc.list_models(force_refresh=True)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        svc = _service(lambda request: httpx.Response(500))
        with pytest.raises(RequestFailed) as exc_info:
            await svc.list_models()
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        svc = _service(handler)
        with pytest.raises(ServiceUnavailable):
            await svc.list_models()
        assert await svc.check_availability() is False

    @pytest.mark.asyncio
    async def test_malformed_payload(self):
        svc = _service(lambda request: httpx.Response(200, content=b"not json"))
        with pytest.raises(ResponseParseError):
            await svc.list_models()

    @pytest.mark.asyncio
    async def test_select_model_accepts_implicit_latest(self):
        svc = _service(lambda request: httpx.Response(200, json=TAGS))
        await svc.select_model("llama3")
        assert svc.selected_model == "llama3:latest"

    @pytest.mark.asyncio
    async def test_select_unknown_model(self):
        svc = _service(lambda request: httpx.Response(200, json=TAGS))
        with pytest.raises(ModelNotFound):
            await svc.select_model("gpt-4")
        assert svc.selected_model is None

    @pytest.mark.asyncio
    async def test_resolve_model_keeps_selection(self):
        svc = _service(lambda request: httpx.Response(200, json=TAGS))
        assert await svc.resolve_model("llama3") == "llama3:latest"
        assert svc.selected_model is None


class TestGenerate:
    @pytest.mark.asyncio
    async def test_streams_until_done(self):
        seen = {}

        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json=TAGS)
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                content=_ndjson(
                    {"response": "Hel", "done": False},
                    {"response": "lo", "done": False},
                    {"response": "", "done": True},
                    {"response": "ignored", "done": False},
                ),
            )

        svc = _service(handler)
        await svc.select_model("llama3:latest")
        chunks = [c async for c in svc.generate_text("hi", GenerationOptions(temperature=0.2))]

        assert chunks == ["Hel", "lo"]
        assert seen["body"]["model"] == "llama3:latest"
        assert seen["body"]["stream"] is True
        assert seen["body"]["options"]["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_request_model_overrides_selection(self):
        seen = []

        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json=TAGS)
            seen.append(json.loads(request.content)["model"])
            return httpx.Response(200, content=_ndjson({"response": "ok", "done": True}))

        svc = _service(handler)
        await svc.select_model("llama3:latest")
        assert await svc.generate("hi", model="codellama:7b") == "ok"
        assert await svc.generate("hi") == "ok"
        assert seen == ["codellama:7b", "llama3:latest"]
        assert svc.selected_model == "llama3:latest"

    @pytest.mark.asyncio
    async def test_requires_selected_model(self):
        svc = _service(lambda request: httpx.Response(200, json=TAGS))
        with pytest.raises(NoModelSelected):
            await svc.generate("hi")

    @pytest.mark.asyncio
    async def test_error_event_raises(self):
        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json=TAGS)
            return httpx.Response(200, content=_ndjson({"error": "model crashed"}))

        svc = _service(handler)
        await svc.select_model("codellama:7b")
        with pytest.raises(RequestFailed, match="model crashed"):
            await svc.generate("hi")

    @pytest.mark.asyncio
    async def test_bad_stream_line(self):
        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json=TAGS)
            return httpx.Response(200, content=b"{broken\n")

        svc = _service(handler)
        await svc.select_model("codellama:7b")
        with pytest.raises(ResponseParseError):
            await svc.generate("hi")

    @pytest.mark.asyncio
    async def test_non_200_generate(self):
        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json=TAGS)
            return httpx.Response(404, content=b"model not loaded")

        svc = _service(handler)
        await svc.select_model("codellama:7b")
        with pytest.raises(RequestFailed, match="404"):
            await svc.generate("hi")

    @pytest.mark.asyncio
    async def test_pull_model_progress(self):
        def handler(request):
            return httpx.Response(
                200,
                content=_ndjson(
                    {"status": "pulling manifest"},
                    {"status": "downloading", "total": 100, "completed": 50},
                    {"status": "success"},
                ),
            )

        svc = _service(handler)
        events = [p async for p in svc.pull_model("phi3")]
        assert [e.status for e in events] == ["pulling manifest", "downloading", "success"]
        assert events[1].fraction == 0.5
