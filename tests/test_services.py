"""
Provider service tests: LLM, image and TTS adapters
"""

import base64
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from storyloom.core.config import settings
from storyloom.core.errors import ErrorCode, ImageError, LLMError, TTSError
from storyloom.core.media import AUDIO_TYPES, IMAGE_TYPES, is_data_uri
from storyloom.models.dto import ImagePrompt, RewrittenStory, VoiceProfile
from storyloom.services.dialogue import normalize_script

from conftest import PAGE_TWO, image_uri

real_async_client = httpx.AsyncClient


def mock_client(handler):
    """AsyncClient factory routed through an httpx.MockTransport"""
    transport = httpx.MockTransport(handler)

    def factory(*args, **kwargs):
        return real_async_client(*args, transport=transport, **kwargs)

    return factory


class TestLLMService:
    """LLM adapter tests (mock provider)."""

    @pytest.mark.asyncio
    async def test_mock_story_rewrite(self):
        from storyloom.services.llm import call_story_rewrite

        story = await call_story_rewrite("A fox who learns to share apples.", 5)

        assert story.startswith("Once upon a time")
        assert "A fox who learns to share apples." in story
        assert story.count("\n\n") == 2

    @pytest.mark.asyncio
    async def test_empty_rewrite_returns_sentinel(self):
        from storyloom.services import llm

        with patch.object(
            llm, "call_llm", new=AsyncMock(return_value='{"rewritten_story": "  "}')
        ):
            story = await llm.call_story_rewrite("A fox who learns to share.", 5)

        assert story == llm.REWRITE_ERROR_SENTINEL
        assert story.startswith("Error:")

    @pytest.mark.asyncio
    async def test_mock_dialogue_is_valid_script(self):
        from storyloom.services.llm import call_dialogue_transformation

        draft = await call_dialogue_transformation(PAGE_TWO, 5)
        script = normalize_script(draft.dialogue_text)

        assert script is not None
        lines = script.splitlines()
        assert lines[0].startswith("Narrator: One day")
        assert lines[1].startswith("Character: \"I have no apples")

    @pytest.mark.asyncio
    async def test_mock_fit_check(self):
        from storyloom.services.llm import call_image_fit_check

        assert await call_image_fit_check("A fox.", 5, "watercolor") is True

    def test_rewrite_prompt_includes_learning_themes(self):
        from storyloom.services.llm import render_prompt

        prompt = render_prompt(
            "rewrite_story.user.jinja2",
            story_text="A fox.",
            child_age=6,
            learning_prompt="- Counting (Math): count things",
        )
        assert "age 6" in prompt
        assert "- Counting (Math): count things" in prompt
        assert "<story>" in prompt

    def test_parse_json_strips_code_fence(self):
        from storyloom.services.llm import parse_json_response

        text = '```json\n{"rewritten_story": "Hello"}\n```'
        assert parse_json_response(text, RewrittenStory).rewritten_story == "Hello"

    @pytest.mark.parametrize("text", ["not json", '{"wrong_field": 1}'])
    def test_parse_json_errors(self, text):
        from storyloom.services.llm import parse_json_response

        with pytest.raises(LLMError) as exc_info:
            parse_json_response(text, RewrittenStory)
        assert exc_info.value.code == ErrorCode.LLM_JSON_INVALID

    @pytest.mark.asyncio
    async def test_unknown_provider(self, monkeypatch):
        from storyloom.services.llm import call_llm

        monkeypatch.setattr(settings, "llm_provider", "carrier-pigeon")
        with pytest.raises(ValueError):
            await call_llm("system", "user")

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        from storyloom.services.llm import call_llm

        monkeypatch.setattr(settings, "llm_provider", "openai")
        monkeypatch.setattr(settings, "llm_api_key", None)
        with pytest.raises(LLMError) as exc_info:
            await call_llm("system", "user")
        assert exc_info.value.code == ErrorCode.LLM_FAILED

    @pytest.mark.asyncio
    async def test_openai_call(self, monkeypatch):
        from storyloom.services import llm

        monkeypatch.setattr(settings, "llm_provider", "openai")
        monkeypatch.setattr(settings, "llm_api_key", "sk-test")
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"choices": [{"message": {"content": '{"ok": true}'}}]}
            )

        with patch.object(llm.httpx, "AsyncClient", new=mock_client(handler)):
            text = await llm.call_llm("system", "user")

        assert text == '{"ok": true}'
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.parametrize(
        "status,code",
        [(429, ErrorCode.LLM_TIMEOUT), (503, ErrorCode.LLM_TIMEOUT), (400, ErrorCode.LLM_FAILED)],
    )
    def test_status_classification(self, status, code):
        from storyloom.services.llm import _raise_for_status

        with pytest.raises(LLMError) as exc_info:
            _raise_for_status("OpenAI", httpx.Response(status, text="nope"))
        assert exc_info.value.code == code


class TestImageService:
    """Image adapter tests."""

    @pytest.mark.asyncio
    async def test_mock_image_is_valid_png(self):
        from storyloom.services.image import generate_image

        result = await generate_image(ImagePrompt(page=1, text="A fox."))
        assert is_data_uri(result.image_data_uri, IMAGE_TYPES)

    def test_reference_image_sent_inline(self):
        from storyloom.services.image import _build_parts

        parts = _build_parts(
            ImagePrompt(
                page=2,
                text="Continue.",
                reference_image=image_uri(1),
                constraints=["text", "letters"],
            )
        )
        assert parts[0]["inline_data"]["mime_type"] == "image/png"
        assert parts[0]["inline_data"]["data"] == image_uri(1).split(",", 1)[1]
        assert parts[1]["text"] == "Continue.\nAvoid: text, letters."

    @pytest.mark.asyncio
    async def test_gemini_inline_image(self, monkeypatch):
        from storyloom.services import image

        monkeypatch.setattr(settings, "image_provider", "gemini")
        monkeypatch.setattr(settings, "image_api_key", "test-key")
        payload = base64.b64encode(b"fake-png").decode()

        def handler(request):
            assert request.headers["x-goog-api-key"] == "test-key"
            return httpx.Response(
                200,
                json={
                    "candidates": [
                        {
                            "content": {
                                "parts": [
                                    {"text": "Here you go"},
                                    {"inlineData": {"mimeType": "image/png", "data": payload}},
                                ]
                            }
                        }
                    ]
                },
            )

        with patch.object(image.httpx, "AsyncClient", new=mock_client(handler)):
            result = await image.generate_image(ImagePrompt(page=1, text="A fox."))

        assert result.image_data_uri == f"data:image/png;base64,{payload}"
        assert result.note == "Here you go"

    @pytest.mark.asyncio
    async def test_gemini_blocked_prompt_has_note_only(self, monkeypatch):
        from storyloom.services import image

        monkeypatch.setattr(settings, "image_provider", "gemini")
        monkeypatch.setattr(settings, "image_api_key", "test-key")

        def handler(request):
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

        with patch.object(image.httpx, "AsyncClient", new=mock_client(handler)):
            result = await image.generate_image(ImagePrompt(page=1, text="A fox."))

        assert result.image_data_uri is None
        assert result.note == "blocked: SAFETY"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,code",
        [
            (429, ErrorCode.IMAGE_RATE_LIMIT),
            (500, ErrorCode.IMAGE_TIMEOUT),
            (400, ErrorCode.IMAGE_FAILED),
        ],
    )
    async def test_gemini_error_classification(self, monkeypatch, status, code):
        from storyloom.services import image

        monkeypatch.setattr(settings, "image_provider", "gemini")
        monkeypatch.setattr(settings, "image_api_key", "test-key")

        def handler(request):
            return httpx.Response(status, text="error")

        with patch.object(image.httpx, "AsyncClient", new=mock_client(handler)):
            with pytest.raises(ImageError) as exc_info:
                await image.generate_image(ImagePrompt(page=3, text="A fox."))

        assert exc_info.value.code == code
        assert exc_info.value.details["page"] == 3

    @pytest.mark.asyncio
    async def test_gemini_without_key(self, monkeypatch):
        from storyloom.services.image import generate_image

        monkeypatch.setattr(settings, "image_provider", "gemini")
        monkeypatch.setattr(settings, "image_api_key", None)
        with pytest.raises(ImageError):
            await generate_image(ImagePrompt(page=1, text="A fox."))


class TestTTSService:
    """TTS provider tests."""

    @pytest.mark.asyncio
    async def test_mock_provider_returns_audio(self):
        from storyloom.services.tts import MockTTSProvider, TTSService

        service = TTSService(provider=MockTTSProvider())
        result = await service.synthesize_speech("Narrator: Hi.", VoiceProfile.female, 5)

        assert is_data_uri(result.audio_data_uri, AUDIO_TYPES)
        assert result.audio_data_uri.startswith("data:audio/mpeg;base64,")

    def test_provider_selected_from_settings(self, monkeypatch):
        from storyloom.services.tts import (
            ElevenLabsProvider,
            GoogleTTSProvider,
            MockTTSProvider,
            TTSService,
        )

        monkeypatch.setattr(settings, "tts_provider", "google")
        assert isinstance(TTSService().provider, GoogleTTSProvider)
        monkeypatch.setattr(settings, "tts_provider", "elevenlabs")
        assert isinstance(TTSService().provider, ElevenLabsProvider)
        monkeypatch.setattr(settings, "tts_provider", "mock")
        assert isinstance(TTSService().provider, MockTTSProvider)

    def test_spoken_text_drops_speaker_labels(self):
        from storyloom.services.tts import spoken_text

        assert spoken_text("Narrator: Mila smiled.\nMila: Hello!") == "Mila smiled.\nHello!"
        assert spoken_text("  plain text  ") == "plain text"

    @pytest.mark.parametrize("age,rate", [(3, 0.85), (6, 0.9), (11, 1.0)])
    def test_speaking_rate(self, age, rate):
        from storyloom.services.tts import speaking_rate

        assert speaking_rate(age) == rate

    @pytest.mark.asyncio
    async def test_google_without_key(self, monkeypatch):
        from storyloom.services.tts import GoogleTTSProvider

        monkeypatch.setattr(settings, "google_tts_api_key", None)
        with pytest.raises(TTSError):
            await GoogleTTSProvider().synthesize("Narrator: Hi.", VoiceProfile.male, 5)

    @pytest.mark.asyncio
    async def test_google_uses_profile_voice(self, monkeypatch):
        from storyloom.services import tts

        monkeypatch.setattr(settings, "google_tts_api_key", "test-key")
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"audioContent": base64.b64encode(b"mp3-bytes").decode()}
            )

        with patch.object(tts.httpx, "AsyncClient", new=mock_client(handler)):
            service = tts.TTSService(provider=tts.GoogleTTSProvider())
            result = await service.synthesize_speech(
                "Narrator: Hi.\nMila: Hello!", VoiceProfile.male, 3
            )

        assert result.audio_data_uri == "data:audio/mpeg;base64," + base64.b64encode(
            b"mp3-bytes"
        ).decode()
        assert seen["body"]["voice"]["name"] == settings.google_tts_voice_male
        assert seen["body"]["input"]["text"] == "Hi.\nHello!"
        assert seen["body"]["audioConfig"]["speakingRate"] == 0.85

    @pytest.mark.asyncio
    async def test_empty_audio_reported_as_note(self, monkeypatch):
        from storyloom.services import tts

        monkeypatch.setattr(settings, "google_tts_api_key", "test-key")

        def handler(request):
            return httpx.Response(200, json={})

        with patch.object(tts.httpx, "AsyncClient", new=mock_client(handler)):
            service = tts.TTSService(provider=tts.GoogleTTSProvider())
            result = await service.synthesize_speech("Narrator: Hi.", VoiceProfile.female, 5)

        assert result.audio_data_uri is None
        assert "no audio" in result.note

    def test_gemini_pcm_wrapped_as_wav(self):
        from storyloom.services.tts import GeminiTTSProvider

        wav = GeminiTTSProvider()._wrap_pcm(b"\x00\x00" * 100)
        assert wav[:4] == b"RIFF"
        assert wav[8:12] == b"WAVE"
