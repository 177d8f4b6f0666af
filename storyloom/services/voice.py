"""
Voice synthesis: dialogue script -> narrated audio outcome
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from storyloom.core.config import settings
from storyloom.core.media import AUDIO_TYPES, describe, is_data_uri
from storyloom.models.dto import Outcome, SpeechResult, VoiceProfile

logger = structlog.get_logger()


class VoiceSynthesizer:
    def __init__(
        self,
        synthesize_speech: Callable[[str, VoiceProfile, int], Awaitable[SpeechResult]],
        timeout: Optional[float] = None,
    ):
        self.synthesize_speech = synthesize_speech
        self.timeout = timeout if timeout is not None else settings.tts_timeout

    async def synthesize_voice(
        self, dialogue_script: str, voice_profile: VoiceProfile, child_age: int
    ) -> Outcome:
        """Narrate a page's dialogue script. Never raises."""
        try:
            result = await asyncio.wait_for(
                self.synthesize_speech(dialogue_script, voice_profile, child_age),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Voice synthesis timed out", timeout=self.timeout)
            return Outcome.unavailable("voice synthesis timed out")
        except Exception as e:
            logger.warning("Voice synthesis failed", error=str(e))
            return Outcome.failed(str(e) or type(e).__name__)

        uri = result.audio_data_uri if result else None
        if is_data_uri(uri, AUDIO_TYPES):
            return Outcome.ok(uri)

        if uri:
            # Providers sometimes hand back placeholder "audio"
            logger.warning("Voice output rejected", value=describe(uri))
        return Outcome.unavailable(
            (result.note if result else None) or "no usable audio"
        )
