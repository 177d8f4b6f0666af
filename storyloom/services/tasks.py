"""
Celery tasks for off-request storybook generation
"""
import asyncio
from celery import shared_task
import structlog


logger = structlog.get_logger()


def run_async(coro):
    """Run async function in sync context for Celery."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def summarize_run(run) -> dict:
    """JSON-safe result of a finished run"""
    summary = {
        "status": "success" if run.succeeded else ("abandoned" if run.abandoned else "failed"),
        "run_id": run.run_id,
        "stage": run.stage.label,
        "progress": run.progress,
        "title": run.title,
        "page_count": len(run.pages),
        "storybook_id": run.storybook_id,
        "error": run.error.model_dump() if run.error else None,
    }
    if run.succeeded:
        summary["storybook"] = run.to_storybook().model_dump(mode="json")
    return summary


async def _generate(request):
    from storyloom.core.database import async_engine, init_db
    from storyloom.services.orchestrator import generate_storybook
    from storyloom.services.progress import JobStatusReporter

    try:
        await init_db()
        run = await generate_storybook(request, reporter=JobStatusReporter())
    finally:
        # Pooled connections belong to this task's event loop
        await async_engine.dispose()
    return run


@shared_task(bind=True, max_retries=0)
def generate_storybook_task(self, request_dict: dict):
    """
    Celery task for storybook generation.

    Args:
        request_dict: GenerationRequest as dictionary
    """
    from storyloom.models.dto import GenerationRequest

    request = GenerationRequest(**request_dict)
    logger.info("Starting storybook generation task", child_age=request.child_age)

    try:
        run = run_async(_generate(request))
    except Exception as e:
        logger.error("Storybook generation task crashed", error=str(e))
        raise

    summary = summarize_run(run)
    logger.info(
        "Storybook generation task finished",
        run_id=run.run_id,
        status=summary["status"],
    )
    return summary
