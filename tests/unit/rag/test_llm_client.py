"""Tests for the LiteLLM client wrapper."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from simkb.rag.llm_client import complete, embed_many, validate_api_key


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/gpt-4o-mini")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/text-embedding-3-small")


def test_validate_api_key_azure(monkeypatch):
    monkeypatch.delenv("AZURE_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="AZURE_API_KEY"):
        validate_api_key("azure/my-deployment")


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/nomic-embed-text")


def test_validate_api_key_unknown_provider_uses_provider_name(monkeypatch):
    monkeypatch.delenv("VOYAGE_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="VOYAGE_API_KEY"):
        validate_api_key("voyage/voyage-3")


def test_validate_api_key_bare_model_is_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("text-embedding-3-small")


# ------------------------------------------------------------------
# complete / embed_many
# ------------------------------------------------------------------


def test_complete_returns_content():
    resp = MagicMock()
    resp.choices[0].message.content = '{"nodes": []}'
    with patch("simkb.rag.llm_client.litellm.completion", return_value=resp) as mock_c:
        out = complete("openai/gpt-4o-mini", [{"role": "user", "content": "hi"}], max_tokens=10)
    assert out == '{"nodes": []}'
    assert mock_c.call_args.kwargs["max_tokens"] == 10
    assert mock_c.call_args.kwargs["temperature"] == 0.0


def test_complete_none_content_is_empty_string():
    resp = MagicMock()
    resp.choices[0].message.content = None
    with patch("simkb.rag.llm_client.litellm.completion", return_value=resp):
        assert complete("openai/gpt-4o-mini", []) == ""


def test_embed_many_attribute_style_items():
    item = MagicMock(spec=["index", "embedding"])
    item.index = 0
    item.embedding = [0.25]
    resp = MagicMock()
    resp.data = [item]
    with patch("simkb.rag.llm_client.litellm.embedding", return_value=resp):
        assert embed_many("openai/text-embedding-3-small", ["a"]) == [[0.25]]


def test_embed_many_without_index_uses_position():
    resp = MagicMock()
    resp.data = [{"embedding": [1.0]}, {"embedding": [2.0]}]
    with patch("simkb.rag.llm_client.litellm.embedding", return_value=resp):
        assert embed_many("openai/text-embedding-3-small", ["a", "b"]) == [[1.0], [2.0]]
