"""
TTS (Text-to-Speech) Service
Turns a page's dialogue script into narrated audio
"""
import base64
import io
import wave
from abc import ABC, abstractmethod

import httpx
import structlog

from storyloom.core.config import settings
from storyloom.core.errors import TTSError
from storyloom.core.media import to_data_uri
from storyloom.models.dto import SpeechResult, VoiceProfile
from storyloom.services.dialogue import parse_dialogue
from storyloom.services.llm import render_prompt

logger = structlog.get_logger()


def speaking_rate(child_age: int) -> float:
    """Slower narration for younger listeners"""
    if child_age <= 4:
        return 0.85
    if child_age <= 8:
        return 0.9
    return 1.0


def spoken_text(script: str) -> str:
    """Script without the speaker labels, one line per record"""
    lines = parse_dialogue(script)
    if not lines:
        return script.strip()
    return "\n".join(line.line for line in lines)


class BaseTTSProvider(ABC):
    """Base TTS provider"""

    name = "base"
    mime_type = "audio/mpeg"

    @abstractmethod
    async def synthesize(
        self, script: str, voice_profile: VoiceProfile, child_age: int
    ) -> bytes:
        """Return encoded audio, or empty bytes when nothing was produced"""
        pass


class GoogleTTSProvider(BaseTTSProvider):
    """Google Cloud TTS Provider"""

    name = "google"

    def __init__(self):
        self.api_key = settings.google_tts_api_key
        self.base_url = "https://texttospeech.googleapis.com/v1/text:synthesize"

    async def synthesize(
        self, script: str, voice_profile: VoiceProfile, child_age: int
    ) -> bytes:
        if not self.api_key:
            raise TTSError("GOOGLE_TTS_API_KEY not configured", provider=self.name)

        voice = (
            settings.google_tts_voice_male
            if voice_profile == VoiceProfile.male
            else settings.google_tts_voice_female
        )
        payload = {
            "input": {"text": spoken_text(script)},
            "voice": {
                "languageCode": settings.google_tts_language,
                "name": voice,
            },
            "audioConfig": {
                "audioEncoding": "MP3",
                "speakingRate": speaking_rate(child_age),
                "pitch": 0.0,
            },
        }

        async with httpx.AsyncClient(timeout=settings.tts_timeout) as client:
            response = await client.post(
                f"{self.base_url}?key={self.api_key}",
                json=payload,
            )
            response.raise_for_status()
            data = response.json()

        content = data.get("audioContent")
        return base64.b64decode(content) if content else b""


class ElevenLabsProvider(BaseTTSProvider):
    """ElevenLabs TTS Provider"""

    name = "elevenlabs"

    def __init__(self):
        self.api_key = settings.elevenlabs_api_key
        self.base_url = "https://api.elevenlabs.io/v1/text-to-speech"

    async def synthesize(
        self, script: str, voice_profile: VoiceProfile, child_age: int
    ) -> bytes:
        if not self.api_key:
            raise TTSError("ELEVENLABS_API_KEY not configured", provider=self.name)

        voice_id = (
            settings.elevenlabs_voice_male
            if voice_profile == VoiceProfile.male
            else settings.elevenlabs_voice_female
        )
        payload = {
            "text": spoken_text(script),
            "model_id": "eleven_multilingual_v2",
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
                "style": 0.5,
                "speed": speaking_rate(child_age),
                "use_speaker_boost": True,
            },
        }

        async with httpx.AsyncClient(timeout=settings.tts_timeout) as client:
            response = await client.post(
                f"{self.base_url}/{voice_id}",
                json=payload,
                headers={
                    "xi-api-key": self.api_key,
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            return response.content


class GeminiTTSProvider(BaseTTSProvider):
    """Gemini speech output; raw 24kHz PCM wrapped into WAV"""

    name = "gemini"
    mime_type = "audio/wav"
    sample_rate = 24000

    def __init__(self):
        self.api_key = settings.gemini_tts_api_key
        self.url = (
            "https://generativelanguage.googleapis.com/v1beta/models/"
            f"{settings.gemini_tts_model}:generateContent"
        )

    async def synthesize(
        self, script: str, voice_profile: VoiceProfile, child_age: int
    ) -> bytes:
        if not self.api_key:
            raise TTSError("GEMINI_TTS_API_KEY not configured", provider=self.name)

        voice = (
            settings.gemini_tts_voice_male
            if voice_profile == VoiceProfile.male
            else settings.gemini_tts_voice_female
        )
        prompt = render_prompt(
            "narration.jinja2",
            script=script,
            voice_profile=voice_profile.value,
            child_age=child_age,
        )

        async with httpx.AsyncClient(timeout=settings.tts_timeout) as client:
            response = await client.post(
                self.url,
                headers={"x-goog-api-key": self.api_key},
                json={
                    "contents": [{"parts": [{"text": prompt}]}],
                    "generationConfig": {
                        "responseModalities": ["AUDIO"],
                        "speechConfig": {
                            "voiceConfig": {
                                "prebuiltVoiceConfig": {"voiceName": voice}
                            }
                        },
                    },
                },
            )
            response.raise_for_status()
            data = response.json()

        for candidate in data.get("candidates", []):
            for part in candidate.get("content", {}).get("parts", []):
                inline = part.get("inlineData") or {}
                if inline.get("data"):
                    return self._wrap_pcm(base64.b64decode(inline["data"]))
        return b""

    def _wrap_pcm(self, pcm: bytes) -> bytes:
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(self.sample_rate)
            wav.writeframes(pcm)
        return buffer.getvalue()


class MockTTSProvider(BaseTTSProvider):
    """Mock TTS Provider for testing"""

    name = "mock"

    async def synthesize(
        self, script: str, voice_profile: VoiceProfile, child_age: int
    ) -> bytes:
        # Minimal MP3 frame header
        return bytes([
            0xFF, 0xFB, 0x90, 0x00, 0x00, 0x00, 0x00, 0x00,
            0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00,
        ])


class TTSService:
    """TTS service"""

    def __init__(self, provider: BaseTTSProvider = None):
        self.provider = provider or self._get_provider()

    def _get_provider(self) -> BaseTTSProvider:
        """Pick the provider named in settings"""
        provider_name = settings.tts_provider.lower()

        if provider_name == "google":
            return GoogleTTSProvider()
        elif provider_name == "elevenlabs":
            return ElevenLabsProvider()
        elif provider_name == "gemini":
            return GeminiTTSProvider()
        else:
            return MockTTSProvider()

    async def synthesize_speech(
        self, script: str, voice_profile: VoiceProfile, child_age: int
    ) -> SpeechResult:
        """Narrate one dialogue script"""
        audio = await self.provider.synthesize(script, voice_profile, child_age)
        if not audio:
            logger.warning("TTS returned no audio", provider=self.provider.name)
            return SpeechResult(note=f"{self.provider.name} returned no audio")
        return SpeechResult(audio_data_uri=to_data_uri(audio, self.provider.mime_type))
