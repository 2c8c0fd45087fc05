"""Tests for the LiteLLM client wrapper."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from plantops.rag.llm_client import (
    complete,
    count_tokens,
    embed,
    embed_many,
    provider_of,
    validate_api_key,
)


def _embedding_response(vectors: list[list[float]]) -> MagicMock:
    response = MagicMock()
    response.data = [{"embedding": v} for v in vectors]
    return response


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/gpt-4o")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/gpt-4o")


def test_validate_api_key_anthropic(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="ANTHROPIC_API_KEY"):
        validate_api_key("anthropic/claude-3-5-sonnet-20241022")


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/llama2")


def test_validate_api_key_unprefixed_model_treated_as_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError):
        validate_api_key("gpt-4o")


def test_provider_of():
    assert provider_of("Anthropic/claude-3-haiku") == "anthropic"
    assert provider_of("text-embedding-3-small") == "openai"


# ------------------------------------------------------------------
# complete()
# ------------------------------------------------------------------


def test_complete_returns_content():
    mock_response = MagicMock()
    mock_response.choices[0].message.content = "Hello, world!"

    with patch("plantops.rag.llm_client.litellm.completion", return_value=mock_response):
        result = complete("openai/gpt-4o", [{"role": "user", "content": "Hi"}])

    assert result == "Hello, world!"


def test_complete_returns_empty_string_on_none_content():
    mock_response = MagicMock()
    mock_response.choices[0].message.content = None

    with patch("plantops.rag.llm_client.litellm.completion", return_value=mock_response):
        result = complete("openai/gpt-4o", [{"role": "user", "content": "Hi"}])

    assert result == ""


def test_complete_passes_params_to_litellm():
    mock_response = MagicMock()
    mock_response.choices[0].message.content = "ok"

    with patch("plantops.rag.llm_client.litellm.completion", return_value=mock_response) as mock_c:
        complete(
            "openai/gpt-4o-mini",
            [{"role": "user", "content": "test"}],
            max_tokens=5,
            temperature=0.5,
            num_retries=2,
        )

    call_kwargs = mock_c.call_args.kwargs
    assert call_kwargs["model"] == "openai/gpt-4o-mini"
    assert call_kwargs["max_tokens"] == 5
    assert call_kwargs["temperature"] == 0.5
    assert call_kwargs["num_retries"] == 2


# ------------------------------------------------------------------
# embed() / embed_many()
# ------------------------------------------------------------------


def test_embed_returns_vector():
    with patch(
        "plantops.rag.llm_client.litellm.embedding",
        return_value=_embedding_response([[0.1, 0.2, 0.3]]),
    ) as mock_e:
        result = embed("openai/text-embedding-3-small", "hello")

    assert result == [0.1, 0.2, 0.3]
    assert mock_e.call_args.kwargs["input"] == ["hello"]


def test_embed_many_batches_in_order():
    responses = [
        _embedding_response([[1.0], [2.0]]),
        _embedding_response([[3.0]]),
    ]
    with patch(
        "plantops.rag.llm_client.litellm.embedding", side_effect=responses
    ) as mock_e:
        result = embed_many("openai/text-embedding-3-small", ["a", "b", "c"], batch_size=2)

    assert result == [[1.0], [2.0], [3.0]]
    assert [c.kwargs["input"] for c in mock_e.call_args_list] == [["a", "b"], ["c"]]


def test_embed_many_count_mismatch_raises():
    with patch(
        "plantops.rag.llm_client.litellm.embedding",
        return_value=_embedding_response([[1.0]]),
    ):
        with pytest.raises(ValueError, match="1 vectors for 2 inputs"):
            embed_many("openai/text-embedding-3-small", ["a", "b"])


def test_embed_many_empty_input_makes_no_call():
    with patch("plantops.rag.llm_client.litellm.embedding") as mock_e:
        assert embed_many("openai/text-embedding-3-small", []) == []
    mock_e.assert_not_called()


# ------------------------------------------------------------------
# count_tokens()
# ------------------------------------------------------------------


def test_count_tokens_uses_litellm():
    with patch("plantops.rag.llm_client.litellm.token_counter", return_value=42):
        result = count_tokens("openai/gpt-4o", "some text")
    assert result == 42


def test_count_tokens_fallback_on_error():
    with patch(
        "plantops.rag.llm_client.litellm.token_counter", side_effect=Exception("unsupported")
    ):
        result = count_tokens("unknown/model", "a" * 100)
    assert result == 25


def test_count_tokens_fallback_minimum_one():
    with patch(
        "plantops.rag.llm_client.litellm.token_counter", side_effect=Exception("err")
    ):
        result = count_tokens("x", "")
    assert result == 1
