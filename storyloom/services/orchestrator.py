"""
Orchestrator: storybook generation pipeline

Pipeline stages:
A. Story rewrite (LLM -> child-friendly text)           INITIAL -> STORY_REWRITTEN
B. Page segmentation + illustration, in page order      -> PAGES_IMAGED
C. Dialogue script + narration per page, concurrently   -> PAGES_VOICED
D. Animation per illustrated page, concurrently         -> PAGES_ANIMATED
E. Handoff to the storybook sink, run sealed            -> COMPLETE

Only the rewrite can fail a run. Every per-page failure is recorded on its
page and the batch carries on.
"""

import asyncio
import re
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from storyloom.core.config import Settings, settings
from storyloom.core.errors import (
    ErrorCode,
    StoryBookError,
    StoryRewriteError,
    get_backoff,
    is_retryable,
)
from storyloom.models.catalog import learning_prompt_text
from storyloom.models.dto import (
    ErrorInfo,
    GenerationRequest,
    ImageResult,
    Outcome,
    PageArtifact,
    PipelineRun,
    PipelineStage,
    utcnow,
)
from storyloom.services.animation import AnimationStage
from storyloom.services.capabilities import Capabilities
from storyloom.services.dialogue import DialogueTransformer
from storyloom.services.illustration import ImageSynthesizer
from storyloom.services.persistence import InMemoryStorybookSink, StorybookSink
from storyloom.services.progress import LoggingProgressReporter, ProgressReporter
from storyloom.services.segmenter import segment
from storyloom.services.task_graph import TaskGraph
from storyloom.services.voice import VoiceSynthesizer

logger = structlog.get_logger()

T = TypeVar("T")


# ==================== Progress Constants ====================

PROGRESS_REWRITE = 20
PROGRESS_IMAGES_END = 50
PROGRESS_VOICE_END = 75
PROGRESS_ANIMATION_END = 99
PROGRESS_COMPLETE = 100

TITLE_MAX_LENGTH = 60
DEFAULT_TITLE = "My Storybook"


def derive_title(request: GenerationRequest, rewritten_text: str) -> str:
    """Request title, else the story's first sentence"""
    if request.title and request.title.strip():
        return request.title.strip()

    first = re.split(r"(?<=[.!?])\s+|\n", rewritten_text.strip(), maxsplit=1)[0]
    first = first.strip().rstrip(".!?").strip()
    if not first:
        return DEFAULT_TITLE
    if len(first) > TITLE_MAX_LENGTH:
        first = first[: TITLE_MAX_LENGTH - 3].rsplit(" ", 1)[0] + "..."
    return first


# ==================== Step Runner ====================


async def run_step(
    run_id: str,
    step_name: str,
    fn: Callable[[], Awaitable[T]],
    retries: int = 0,
    timeout_sec: float = 30,
) -> T:
    """
    Run a critical step with timeout and retries

    Timeouts and retryable errors are retried with backoff; anything else
    stops at once.

    Raises:
        StoryRewriteError: when every attempt failed
    """
    last_exc: Optional[Exception] = None

    for attempt in range(retries + 1):
        try:
            result = await asyncio.wait_for(fn(), timeout=timeout_sec)
            logger.info(
                "Step completed", run_id=run_id, step=step_name, attempt=attempt + 1
            )
            return result

        except asyncio.TimeoutError as e:
            last_exc = e
            code = ErrorCode.LLM_TIMEOUT
            logger.warning(
                "Step timeout",
                run_id=run_id,
                step=step_name,
                attempt=attempt + 1,
                timeout=timeout_sec,
            )

        except Exception as e:
            last_exc = e
            logger.warning(
                "Step error",
                run_id=run_id,
                step=step_name,
                attempt=attempt + 1,
                error=str(e),
            )
            if not is_retryable(e):
                break
            code = e.code if isinstance(e, StoryBookError) else ErrorCode.LLM_TIMEOUT

        if attempt < retries:
            wait_time = get_backoff(code, attempt)
            logger.info(f"Waiting {wait_time}s before retry...")
            await asyncio.sleep(wait_time)

    reason = str(last_exc) or type(last_exc).__name__
    raise StoryRewriteError(
        ErrorCode.STORY_REWRITE_FAILED,
        f"Step '{step_name}' failed: {reason}",
    ) from last_exc


# ==================== Orchestrator ====================


class PipelineOrchestrator:
    """Drives one GenerationRequest through every stage"""

    def __init__(
        self,
        capabilities: Optional[Capabilities] = None,
        sink: Optional[StorybookSink] = None,
        reporter: Optional[ProgressReporter] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or settings
        self.capabilities = capabilities or Capabilities.from_settings()
        self.sink = sink or InMemoryStorybookSink()
        self.reporter = reporter or LoggingProgressReporter()

        caps = self.capabilities
        self.images = ImageSynthesizer(
            caps.generate_image,
            caps.verify_image_fit,
            image_timeout=self.config.image_timeout,
            verify_timeout=self.config.image_verify_timeout,
            max_retries=self.config.image_max_retries,
        )
        self.dialogue = DialogueTransformer(
            caps.transform_dialogue, timeout=self.config.llm_timeout
        )
        self.voice = VoiceSynthesizer(
            caps.synthesize_speech, timeout=self.config.tts_timeout
        )
        self.animation = AnimationStage(
            caps.synthesize_animation, timeout=self.config.animation_timeout
        )

    async def run(
        self,
        request: GenerationRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PipelineRun:
        """
        Generate a storybook

        Args:
            request: validated generation request
            cancel_event: checked between stages; when set the run is abandoned

        Returns:
            the run, COMPLETE and sealed, FAILED with an error, or abandoned
        """
        run = PipelineRun(request=request)
        logger.info(
            "Starting storybook generation",
            run_id=run.run_id,
            child_age=request.child_age,
            voice_profile=request.voice_profile.value,
            visual_style=request.visual_style,
        )
        await self._report(run, "Starting")

        stages = [
            self._rewrite_story,
            self._illustrate_pages,
            self._narrate_pages,
            self._animate_pages,
        ]

        try:
            for stage in stages:
                if self._cancelled(cancel_event):
                    await self._abandon(run)
                    return run
                if not await stage(run):
                    return run

            if self._cancelled(cancel_event):
                await self._abandon(run)
                return run

            await self._complete(run)

        except Exception as e:
            logger.exception("Unexpected error in storybook generation", run_id=run.run_id)
            if not run.terminal and not run.sealed:
                await self._fail(run, ErrorCode.UNKNOWN, str(e) or type(e).__name__)

        return run

    # ==================== Reporting ====================

    async def _report(self, run: PipelineRun, step: str):
        try:
            await self.reporter.report(run.run_id, run.stage, run.progress, step)
        except Exception as e:
            logger.warning("Progress report failed", run_id=run.run_id, error=str(e))

    async def _advance(self, run: PipelineRun, stage: PipelineStage, progress: int, step: str):
        run.advance(stage)
        run.set_progress(progress)
        logger.info(
            "Stage advanced", run_id=run.run_id, stage=stage.label, progress=run.progress
        )
        await self._report(run, step)

    async def _fail(self, run: PipelineRun, code: ErrorCode, message: str):
        run.fail(code.value, message)
        logger.error(
            "Storybook generation failed",
            run_id=run.run_id,
            error_code=code.value,
            message=message,
        )
        try:
            await self.reporter.failed(
                run.run_id, run.stage, run.progress, code.value, run.error.message
            )
        except Exception as e:
            logger.warning("Failure report failed", run_id=run.run_id, error=str(e))

    def _cancelled(self, cancel_event: Optional[asyncio.Event]) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    async def _abandon(self, run: PipelineRun):
        run.abandon()
        logger.warning("Run abandoned", run_id=run.run_id, stage=run.stage.label)
        try:
            await self.reporter.abandoned(run.run_id, run.stage, run.progress)
        except Exception as e:
            logger.warning("Abandon report failed", run_id=run.run_id, error=str(e))

    def _stage_progress(self, start: int, end: int, done: int, total: int) -> float:
        return start + (end - start) * done / total

    # ==================== A. Story Rewrite ====================

    async def _rewrite_story(self, run: PipelineRun) -> bool:
        request = run.request
        learning_prompt = learning_prompt_text(request.learning_tag_ids)

        await self._report(run, "Writing the story")
        try:
            text = await run_step(
                run_id=run.run_id,
                step_name="rewrite_story",
                fn=lambda: self.capabilities.rewrite_story(
                    request.original_prompt, request.child_age, learning_prompt
                ),
                retries=self.config.story_rewrite_retries,
                timeout_sec=self.config.llm_timeout,
            )
        except StoryRewriteError as e:
            await self._fail(run, e.code, e.message)
            return False

        text = (text or "").strip() if isinstance(text, str) else ""
        if not text:
            await self._fail(
                run, ErrorCode.STORY_REWRITE_INVALID, "Story rewrite returned no text"
            )
            return False
        if text.startswith("Error:"):
            await self._fail(run, ErrorCode.STORY_REWRITE_INVALID, text)
            return False

        run.rewritten_text = text
        run.title = derive_title(request, text)
        await self._advance(
            run, PipelineStage.STORY_REWRITTEN, PROGRESS_REWRITE, "Story written"
        )
        return True

    # ==================== B. Illustration ====================

    async def _illustrate_pages(self, run: PipelineRun) -> bool:
        request = run.request
        drafts = segment(run.rewritten_text, request.child_age)
        if not drafts:
            await self._fail(
                run, ErrorCode.EMPTY_STORY, "Segmentation produced no pages"
            )
            return False

        run.set_pages(drafts)
        run.set_pending("image_pending", True)
        logger.info("Story segmented", run_id=run.run_id, pages=len(drafts))

        total = len(drafts)
        done = 0

        async def record(result: ImageResult):
            nonlocal done
            run.update_page(
                result.page,
                image_uri=result.image_uri,
                image_approved=result.approved,
                image_chained=result.chained,
                image_outcome=result.outcome,
            )
            run.set_pending("image_pending", False, result.page)
            done += 1
            run.set_progress(
                self._stage_progress(PROGRESS_REWRITE, PROGRESS_IMAGES_END, done, total)
            )
            await self._report(run, f"Drawing pictures ({done}/{total})")

        await self.images.synthesize(
            drafts,
            request.child_age,
            style_hint=request.effective_style_hint,
            on_result=record,
        )
        run.set_pending("image_pending", False)

        await self._advance(
            run, PipelineStage.PAGES_IMAGED, PROGRESS_IMAGES_END, "Pictures drawn"
        )
        return True

    # ==================== C. Dialogue + Voice ====================

    async def _narrate_pages(self, run: PipelineRun) -> bool:
        request = run.request
        total = len(run.pages)
        done = 0

        async def narrate(page: PageArtifact):
            nonlocal done
            script = await self.dialogue.to_dialogue(page.text, request.child_age)
            run.update_page(page.index, dialogue_script=script)

            outcome = await self.voice.synthesize_voice(
                script, request.voice_profile, request.child_age
            )
            run.update_page(
                page.index,
                voice_uri=outcome.value if outcome.is_ok else None,
                voice_outcome=outcome,
            )
            run.set_pending("voice_pending", False, page.index)
            logger.info(
                "Page voiced", run_id=run.run_id, page=page.index, outcome=outcome.kind.value
            )
            done += 1
            run.set_progress(
                self._stage_progress(PROGRESS_IMAGES_END, PROGRESS_VOICE_END, done, total)
            )
            await self._report(run, f"Recording narration ({done}/{total})")

        run.set_pending("voice_pending", True)
        graph = TaskGraph("narration", max_concurrent=self.config.page_max_concurrent)
        for page in run.pages:
            graph.add(f"voice:{page.index}", lambda page=page: narrate(page))
        results = await graph.run()

        for page in run.pages:
            error = results[f"voice:{page.index}"]
            if isinstance(error, Exception) and page.voice_outcome is None:
                run.update_page(
                    page.index, voice_outcome=Outcome.failed(str(error) or type(error).__name__)
                )
        run.set_pending("voice_pending", False)

        await self._advance(
            run, PipelineStage.PAGES_VOICED, PROGRESS_VOICE_END, "Narration recorded"
        )
        return True

    # ==================== D. Animation ====================

    async def _animate_pages(self, run: PipelineRun) -> bool:
        request = run.request
        total = len(run.pages)
        done = 0

        async def animate(page: PageArtifact):
            nonlocal done
            outcome = await self.animation.animate(
                page.image_uri, page.text, request.child_age
            )
            if outcome is not None:
                run.update_page(
                    page.index,
                    animation_uri=outcome.value if outcome.is_ok else None,
                    animation_outcome=outcome,
                )
            run.set_pending("animation_pending", False, page.index)
            done += 1
            run.set_progress(
                self._stage_progress(
                    PROGRESS_VOICE_END, PROGRESS_ANIMATION_END, done, total
                )
            )
            await self._report(run, f"Animating pictures ({done}/{total})")

        run.set_pending("animation_pending", True)
        graph = TaskGraph("animation", max_concurrent=self.config.page_max_concurrent)
        for page in run.pages:
            graph.add(f"animation:{page.index}", lambda page=page: animate(page))
        results = await graph.run()

        for page in run.pages:
            error = results[f"animation:{page.index}"]
            if isinstance(error, Exception) and page.animation_outcome is None:
                run.update_page(
                    page.index,
                    animation_outcome=Outcome.failed(str(error) or type(error).__name__),
                )
        run.set_pending("animation_pending", False)

        await self._advance(
            run,
            PipelineStage.PAGES_ANIMATED,
            PROGRESS_ANIMATION_END,
            "Animations ready",
        )
        return True

    # ==================== E. Handoff ====================

    async def _complete(self, run: PipelineRun):
        run.advance(PipelineStage.COMPLETE)
        run.set_progress(PROGRESS_COMPLETE)
        run.completed_at = utcnow()

        try:
            storybook_id = await self.sink.save(run.to_storybook())
        except Exception as e:
            # Run stays COMPLETE but unsealed
            message = f"Storybook handoff failed: {e}"
            run.error = ErrorInfo(code=ErrorCode.DB_WRITE_FAILED.value, message=message[:300])
            logger.error("Storybook handoff failed", run_id=run.run_id, error=str(e))
            try:
                await self.reporter.failed(
                    run.run_id,
                    run.stage,
                    run.progress,
                    ErrorCode.DB_WRITE_FAILED.value,
                    run.error.message,
                )
            except Exception as report_error:
                logger.warning(
                    "Failure report failed", run_id=run.run_id, error=str(report_error)
                )
            return

        run.seal(storybook_id)

        try:
            await self.reporter.completed(run.run_id, len(run.pages), storybook_id)
        except Exception as e:
            logger.warning("Completion report failed", run_id=run.run_id, error=str(e))

        logger.info(
            "Storybook generation completed",
            run_id=run.run_id,
            storybook_id=storybook_id,
            pages=len(run.pages),
            images=sum(1 for p in run.pages if p.image_uri),
            voices=sum(1 for p in run.pages if p.voice_uri),
            animations=sum(1 for p in run.pages if p.animation_uri),
        )


async def generate_storybook(
    request: GenerationRequest,
    capabilities: Optional[Capabilities] = None,
    sink: Optional[StorybookSink] = None,
    reporter: Optional[ProgressReporter] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> PipelineRun:
    """Run the pipeline once with default collaborators"""
    orchestrator = PipelineOrchestrator(
        capabilities=capabilities, sink=sink, reporter=reporter
    )
    return await orchestrator.run(request, cancel_event=cancel_event)
