"""
Illustration: one image per page, generated strictly in page order.

Each page after the first is drawn with the previous page's image attached as
a visual reference, so characters and palette stay consistent. The reference
is only ever the immediately preceding page's successfully validated image;
when a page ends up without one, the chain breaks and the next page starts
fresh with the style hint restated.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

import structlog

from storyloom.core.config import settings
from storyloom.core.errors import ErrorCode, StoryBookError, is_retryable, get_backoff
from storyloom.core.media import IMAGE_TYPES, describe, is_data_uri
from storyloom.models.dto import (
    ImageGeneration,
    ImagePrompt,
    ImageResult,
    Outcome,
    PageDraft,
)
from storyloom.services.llm import render_prompt
from storyloom.services.task_graph import TaskGraph

logger = structlog.get_logger()

NEGATIVE_CONSTRAINTS = [
    "text",
    "letters",
    "words",
    "captions",
    "speech bubbles",
    "watermarks",
]


def image_key(index: int) -> str:
    return f"image:{index}"


class ImageSynthesizer:
    def __init__(
        self,
        generate_image: Callable[[ImagePrompt], Awaitable[ImageGeneration]],
        verify_image_fit: Callable[[str, int, Optional[str]], Awaitable[bool]],
        image_timeout: Optional[float] = None,
        verify_timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.generate_image = generate_image
        self.verify_image_fit = verify_image_fit
        self.image_timeout = (
            image_timeout if image_timeout is not None else settings.image_timeout
        )
        self.verify_timeout = (
            verify_timeout
            if verify_timeout is not None
            else settings.image_verify_timeout
        )
        self.max_retries = (
            max_retries if max_retries is not None else settings.image_max_retries
        )

    # ==================== Prompts ====================

    def build_prompt(
        self,
        page: PageDraft,
        child_age: int,
        style_hint: Optional[str] = None,
        anchor: Optional[str] = None,
    ) -> ImagePrompt:
        """Continuation prompt when an anchor exists, otherwise a fresh one"""
        if anchor:
            text = render_prompt(
                "image_continue.jinja2", page_text=page.text, child_age=child_age
            )
        else:
            text = render_prompt(
                "image_fresh.jinja2",
                page_text=page.text,
                child_age=child_age,
                style_hint=(style_hint or "").strip() or None,
            )
        return ImagePrompt(
            page=page.index,
            text=text,
            reference_image=anchor or None,
            constraints=list(NEGATIVE_CONSTRAINTS),
        )

    # ==================== Single Page ====================

    async def _generate_with_retry(self, prompt: ImagePrompt) -> ImageGeneration:
        """Generate, retrying rate limits, 5xx and timeouts with backoff"""
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(
                    self.generate_image(prompt), timeout=self.image_timeout
                )
            except Exception as e:
                timed_out = isinstance(e, asyncio.TimeoutError)
                if attempt >= self.max_retries or not (timed_out or is_retryable(e)):
                    raise
                code = (
                    e.code if isinstance(e, StoryBookError) else ErrorCode.IMAGE_TIMEOUT
                )
                wait_time = get_backoff(code, attempt)
                logger.warning(
                    "Image generation retry",
                    page=prompt.page,
                    attempt=attempt + 1,
                    wait=wait_time,
                    error=str(e) or type(e).__name__,
                )
                await asyncio.sleep(wait_time)
                attempt += 1

    async def _verify(
        self, page: PageDraft, child_age: int, style_hint: Optional[str]
    ) -> bool:
        """Fit check; anything but an explicit True counts as a rejection"""
        try:
            verdict = await asyncio.wait_for(
                self.verify_image_fit(page.text, child_age, style_hint),
                timeout=self.verify_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Image fit check timed out", page=page.index)
            return False
        except Exception as e:
            logger.warning("Image fit check failed", page=page.index, error=str(e))
            return False
        return verdict is True

    async def synthesize_page(
        self,
        page: PageDraft,
        child_age: int,
        style_hint: Optional[str] = None,
        anchor: Optional[str] = None,
    ) -> ImageResult:
        """Illustrate one page. Never raises."""
        prompt = self.build_prompt(page, child_age, style_hint, anchor)

        try:
            generation = await self._generate_with_retry(prompt)
        except asyncio.TimeoutError:
            logger.warning("Image generation timed out", page=page.index)
            return ImageResult(
                page=page.index, outcome=Outcome.unavailable("image generation timed out")
            )
        except Exception as e:
            logger.warning("Image generation failed", page=page.index, error=str(e))
            return ImageResult(
                page=page.index, outcome=Outcome.failed(str(e) or type(e).__name__)
            )

        uri = generation.image_data_uri if generation else None
        if not is_data_uri(uri, IMAGE_TYPES):
            if uri:
                logger.warning(
                    "Image output rejected", page=page.index, value=describe(uri)
                )
            note = generation.note if generation else None
            return ImageResult(
                page=page.index, outcome=Outcome.unavailable(note or "no usable image")
            )

        approved = await self._verify(page, child_age, style_hint)
        return ImageResult(
            page=page.index,
            outcome=Outcome.ok(uri),
            approved=approved,
            chained=prompt.chained,
        )

    # ==================== All Pages ====================

    async def synthesize(
        self,
        pages: List[PageDraft],
        child_age: int,
        style_hint: Optional[str] = None,
        on_result: Optional[Callable[[ImageResult], Awaitable[None]]] = None,
    ) -> List[ImageResult]:
        """
        Illustrate every page, one at a time, in page order.

        Args:
            pages: pages in narrative order
            child_age: reader age
            style_hint: applied to every image drawn without a reference
            on_result: awaited after each page with that page's result

        Returns:
            one ImageResult per page, same order
        """
        anchor: dict = {"uri": None}
        graph = TaskGraph("images", max_concurrent=1)

        def page_task(page: PageDraft):
            async def run() -> ImageResult:
                result = await self.synthesize_page(
                    page, child_age, style_hint, anchor["uri"]
                )
                if anchor["uri"] and not result.outcome.is_ok:
                    logger.warning(
                        "Image chain broken",
                        page=page.index,
                        outcome=result.outcome.kind.value,
                    )
                anchor["uri"] = result.image_uri
                logger.info(
                    "Page imaged",
                    page=page.index,
                    outcome=result.outcome.kind.value,
                    approved=result.approved,
                    chained=result.chained,
                )
                if on_result is not None:
                    await on_result(result)
                return result

            return run

        for page in pages:
            graph.add(image_key(page.index), page_task(page))
        graph.sequence([image_key(page.index) for page in pages])

        outcomes = await graph.run()

        results = []
        for page in pages:
            result = outcomes[image_key(page.index)]
            if isinstance(result, Exception):
                # on_result raised after the page itself was handled
                result = ImageResult(page=page.index, outcome=Outcome.failed(str(result)))
            results.append(result)
        return results
