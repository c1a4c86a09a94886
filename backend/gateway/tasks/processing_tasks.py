"""
Celery tasks — queued analysis of external submissions.

Each task runs the same AnalysisProcessor as the HTTP endpoint, inside
its own event loop, with a fresh database engine for that loop.
"""

import asyncio
from typing import Any

import structlog

from gateway.tasks import celery_app
from gateway.bootstrap import build_components
from gateway.core.config import settings
from gateway.pipeline.errors import AuthorizationError
from gateway.pipeline.models import Submission
from gateway.storage.uploads import discard_uploads

logger = structlog.get_logger("tasks.processing")


async def _process(submission: Submission) -> dict[str, Any]:
    """
    Build components for this loop and run the processor once.

    A submission whose user no longer exists is still audited through
    AnalysisProcessor.reject().  If the worker cannot even be set up, the
    uploads are deleted before the error fails the task.
    """
    from gateway.db.session import make_engine, make_session_factory

    engine = None
    try:
        try:
            engine = make_engine()
            components = build_components(settings, session_factory=make_session_factory(engine))
        except Exception as exc:
            logger.error(
                "Worker setup failed, discarding uploads",
                request_id=submission.request_id,
                error=str(exc),
            )
            await discard_uploads(submission.files)
            raise

        user = components.users.get(submission.user_id)
        if user is None:
            outcome = await components.processor.reject(
                submission,
                AuthorizationError(
                    f"Unknown user '{submission.user_id}'",
                    context={"user_id": submission.user_id},
                ),
            )
        else:
            outcome = await components.processor.run(submission, user)
        return outcome.to_dict()
    finally:
        if engine is not None:
            await engine.dispose()


@celery_app.task(bind=True, name="gateway.tasks.processing_tasks.process_submission")
def process_submission(self, submission: dict[str, Any]) -> dict[str, Any]:
    """
    Process a queued external submission.

    The processor never raises for request-level failures; those are in
    the returned outcome.  Only a broken worker setup fails the task.
    """
    parsed = Submission.model_validate(submission)
    task_log = logger.bind(
        task_id=self.request.id,
        request_id=parsed.request_id,
        user_id=parsed.user_id,
        service=parsed.origin_service,
    )
    task_log.info("Submission task started")

    try:
        result = asyncio.run(_process(parsed))
    except Exception as exc:
        task_log.exception("Submission task failed", error=str(exc))
        raise

    task_log.info(
        "Submission task finished",
        status_code=result["status_code"],
        session_state=result["session_state"],
    )
    return result
