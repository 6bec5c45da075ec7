import asyncio

import httpx
import pytest

from mss_widget.gemini_client import GeminiClient
from mss_widget.settings import Settings


def _gemini_ok(request):
	assert request.url.params["key"] == "k"
	return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "report"}]}}]})


def test_generate_parses_gemini_response():
	client = GeminiClient(config=Settings(GEMINI_API_KEY="k"), transport=httpx.MockTransport(_gemini_ok))

	async def scenario():
		try:
			return await client.generate("hi")
		finally:
			await client.aclose()

	assert asyncio.run(scenario()) == "report"


def test_falls_back_to_openrouter():
	seen = []

	def handler(request):
		seen.append(request.url.host)
		if request.url.host == "openrouter.ai":
			assert request.headers["authorization"] == "Bearer or-key"
			return httpx.Response(200, json={"choices": [{"message": {"content": "fallback report"}}]})
		return httpx.Response(503, json={"error": "overloaded"})

	cfg = Settings(GEMINI_API_KEY="k", OPENROUTER_API_KEY="or-key")
	client = GeminiClient(config=cfg, transport=httpx.MockTransport(handler))

	async def scenario():
		try:
			return await client.generate("hi")
		finally:
			await client.aclose()

	assert asyncio.run(scenario()) == "fallback report"
	assert seen == ["generativelanguage.googleapis.com", "openrouter.ai"]


def test_error_without_fallback():
	transport = httpx.MockTransport(lambda request: httpx.Response(500))
	client = GeminiClient(config=Settings(GEMINI_API_KEY="k", OPENROUTER_API_KEY=None), transport=transport)

	async def scenario():
		try:
			return await client.generate("hi")
		finally:
			await client.aclose()

	with pytest.raises(httpx.HTTPStatusError):
		asyncio.run(scenario())


def test_vertex_uses_header_auth():
	def handler(request):
		assert "aiplatform.googleapis.com" in request.url.host
		assert request.headers["x-goog-api-key"] == "k"
		assert "key" not in request.url.params
		return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})

	cfg = Settings(GEMINI_API_KEY="k", GEMINI_PROVIDER="vertex", GEMINI_VERTEX_PROJECT="proj")
	client = GeminiClient(config=cfg, transport=httpx.MockTransport(handler))

	async def scenario():
		try:
			return await client.generate("hi")
		finally:
			await client.aclose()

	assert asyncio.run(scenario()) == "ok"


def test_missing_key_is_a_configuration_error():
	with pytest.raises(ValueError):
		GeminiClient(config=Settings(GEMINI_API_KEY=None))
