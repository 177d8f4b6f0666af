"""
Animation: per-page illustration -> short motion artifact.

No production animation model is wired in yet; the default provider answers
without media, so every page records an "unavailable" outcome. The stage still
runs for every illustrated page with the same isolation contract as voice.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from storyloom.core.config import settings
from storyloom.core.errors import AnimationError
from storyloom.core.media import ANIMATION_TYPES, describe, is_data_uri
from storyloom.models.dto import AnimationResult, Outcome
from storyloom.services.llm import render_prompt

logger = structlog.get_logger()

# 1x1 GIF
MOCK_GIF_BASE64 = "R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"


async def synthesize_animation(
    image_uri: str, page_text: str, child_age: int
) -> AnimationResult:
    """Animate one illustration with the configured provider"""
    if settings.animation_provider == "none":
        return AnimationResult(note="animation provider disabled")
    elif settings.animation_provider == "mock":
        return await _animate_mock(image_uri, page_text, child_age)
    else:
        raise AnimationError(
            f"Unknown animation provider: {settings.animation_provider}",
            provider=settings.animation_provider,
        )


async def _animate_mock(
    image_uri: str, page_text: str, child_age: int
) -> AnimationResult:
    """Mock animation for testing"""
    await asyncio.sleep(0.01)
    prompt = render_prompt(
        "animation.jinja2", page_text=page_text, child_age=child_age
    )
    return AnimationResult(
        animation_data_uri=f"data:image/gif;base64,{MOCK_GIF_BASE64}",
        note=prompt[:80],
    )


class AnimationStage:
    """Turns illustrated pages into animations; never raises"""

    def __init__(
        self,
        synthesize: Callable[[str, str, int], Awaitable[AnimationResult]],
        timeout: Optional[float] = None,
    ):
        self.synthesize = synthesize
        self.timeout = timeout if timeout is not None else settings.animation_timeout

    async def animate(
        self, image_uri: Optional[str], page_text: str, child_age: int
    ) -> Optional[Outcome]:
        """
        Returns None for pages without an illustration, otherwise ok with a
        validated GIF/WebP/video data URI, unavailable, or failed.
        """
        if not image_uri:
            return None

        try:
            result = await asyncio.wait_for(
                self.synthesize(image_uri, page_text, child_age),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Animation timed out", timeout=self.timeout)
            return Outcome.unavailable("animation timed out")
        except Exception as e:
            logger.warning("Animation failed", error=str(e))
            return Outcome.failed(str(e) or type(e).__name__)

        uri = result.animation_data_uri if result else None
        if is_data_uri(uri, ANIMATION_TYPES):
            return Outcome.ok(uri)

        if uri:
            logger.warning("Animation rejected", value=describe(uri))
        return Outcome.unavailable(
            (result.note if result else None) or "no usable animation"
        )
