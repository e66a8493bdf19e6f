"""Tests for the chat / moderation / image / speech client."""

import pytest
from unittest.mock import patch, MagicMock

from trip_planner.llm import LLMError, OpenAIClient


def _json_resp(payload, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


@pytest.fixture
def client():
    return OpenAIClient(
        api_key="test-key",
        base_url="http://llm.test/v1/",
        chat_model="chat-m",
        image_model="img-m",
        tts_model="tts-m",
    )


@pytest.mark.asyncio
class TestChat:
    @patch("trip_planner.http.requests.post")
    async def test_returns_first_choice(self, mock_post, client):
        mock_post.return_value = _json_resp({
            "choices": [{"message": {"content": "hello"}}, {"message": {"content": "ignored"}}],
        })

        assert await client.chat([{"role": "user", "content": "hi"}]) == "hello"

        args, kwargs = mock_post.call_args
        assert args[0] == "http://llm.test/v1/chat/completions"
        body = kwargs["json"]
        assert body["model"] == "chat-m"
        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 2048
        assert "response_format" not in body

    @patch("trip_planner.http.requests.post")
    async def test_json_response_format(self, mock_post, client):
        mock_post.return_value = _json_resp({"choices": [{"message": {"content": "{}"}}]})

        await client.chat([{"role": "user", "content": "x"}], response_format="json_object")
        assert mock_post.call_args.kwargs["json"]["response_format"] == {"type": "json_object"}

    @patch("trip_planner.http.requests.post")
    async def test_no_choices_gives_empty_string(self, mock_post, client):
        mock_post.return_value = _json_resp({"choices": []})
        assert await client.chat([{"role": "user", "content": "x"}]) == ""

    @patch("trip_planner.http.requests.post")
    async def test_http_error_raises(self, mock_post, client):
        mock_post.return_value = _json_resp({"error": "bad"}, status=400)
        with pytest.raises(LLMError, match="400"):
            await client.chat([{"role": "user", "content": "x"}])


@pytest.mark.asyncio
class TestModeration:
    @patch("trip_planner.http.requests.post")
    async def test_flagged(self, mock_post, client):
        mock_post.return_value = _json_resp({
            "results": [{"flagged": True, "categories": {"violence": True, "hate": False}}],
        })
        result = await client.moderate("something bad")
        assert result.flagged is True
        assert result.categories == {"violence": True, "hate": False}

    @patch("trip_planner.http.requests.post")
    async def test_clean(self, mock_post, client):
        mock_post.return_value = _json_resp({"results": [{"flagged": False}]})
        result = await client.moderate("museum visit")
        assert result.flagged is False
        assert result.categories == {}

    @patch("trip_planner.http.requests.post")
    async def test_missing_results(self, mock_post, client):
        mock_post.return_value = _json_resp({})
        with pytest.raises(LLMError):
            await client.moderate("x")


@pytest.mark.asyncio
class TestImagesAndSpeech:
    @patch("trip_planner.http.requests.post")
    async def test_generate_image(self, mock_post, client):
        mock_post.return_value = _json_resp({"data": [{"b64_json": "aGVsbG8="}]})
        assert await client.generate_image("Kyoto at dusk") == "aGVsbG8="
        body = mock_post.call_args.kwargs["json"]
        assert body["model"] == "img-m"
        assert body["size"] == "1024x1024"

    @patch("trip_planner.http.requests.post")
    async def test_generate_image_without_data(self, mock_post, client):
        mock_post.return_value = _json_resp({"data": []})
        with pytest.raises(LLMError, match="No image"):
            await client.generate_image("x")

    @patch("trip_planner.http.requests.post")
    async def test_text_to_speech_truncates(self, mock_post, client):
        resp = MagicMock()
        resp.status_code = 200
        resp.content = b"ID3audio"
        mock_post.return_value = resp

        audio = await client.text_to_speech("x" * 5000)
        assert audio == b"ID3audio"
        body = mock_post.call_args.kwargs["json"]
        assert len(body["input"]) == 4096
        assert body["voice"] == "alloy"

    async def test_unknown_voice(self, client):
        with pytest.raises(ValueError):
            await client.text_to_speech("hi", voice="robot")
