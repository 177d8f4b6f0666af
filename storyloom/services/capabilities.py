"""
The generative capabilities the pipeline depends on, bundled so a run can be
given real providers, mocks or test fakes without touching global state.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from storyloom.models.dto import (
    AnimationResult,
    DialogueDraft,
    ImageGeneration,
    ImagePrompt,
    SpeechResult,
    VoiceProfile,
)


@dataclass(frozen=True)
class Capabilities:
    rewrite_story: Callable[[str, int, Optional[str]], Awaitable[str]]
    generate_image: Callable[[ImagePrompt], Awaitable[ImageGeneration]]
    verify_image_fit: Callable[[str, int, Optional[str]], Awaitable[bool]]
    transform_dialogue: Callable[[str, int], Awaitable[DialogueDraft]]
    synthesize_speech: Callable[[str, VoiceProfile, int], Awaitable[SpeechResult]]
    synthesize_animation: Callable[[str, str, int], Awaitable[AnimationResult]]

    @classmethod
    def from_settings(cls) -> "Capabilities":
        """Providers selected by the *_PROVIDER settings"""
        from storyloom.services.animation import synthesize_animation
        from storyloom.services.image import generate_image
        from storyloom.services.llm import (
            call_dialogue_transformation,
            call_image_fit_check,
            call_story_rewrite,
        )
        from storyloom.services.tts import TTSService

        return cls(
            rewrite_story=call_story_rewrite,
            generate_image=generate_image,
            verify_image_fit=call_image_fit_check,
            transform_dialogue=call_dialogue_transformation,
            synthesize_speech=TTSService().synthesize_speech,
            synthesize_animation=synthesize_animation,
        )
