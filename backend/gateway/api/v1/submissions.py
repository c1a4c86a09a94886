"""
External-service submissions — queued analysis.
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status

from gateway.api.deps import get_current_user, get_upload_dir
from gateway.api.schemas.analysis import SubmissionAccepted
from gateway.core.constants import RequestOrigin
from gateway.core.logging import get_logger
from gateway.pipeline.models import Submission, User
from gateway.pipeline.session import generate_request_id
from gateway.storage.uploads import discard_uploads, save_upload_files

logger = get_logger(__name__)

router = APIRouter(prefix="/submissions", tags=["Submissions"])


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=SubmissionAccepted)
async def create_submission(
    request: Request,
    service: str = Form(...),
    file: UploadFile | None = File(None),
    supplementary_file: UploadFile | None = File(None),
    options: str | None = Form(None),
    user: User = Depends(get_current_user),
    upload_dir: str = Depends(get_upload_dir),
) -> SubmissionAccepted:
    """
    Queue a document sent by an external service.

    1. Stores the upload(s) where the worker can read them
    2. Dispatches a Celery task that runs the processor with origin=external
    3. Returns instantly with the request ID the session will use

    If the task cannot be queued the stored uploads are deleted and the
    caller gets a 503.
    """
    from gateway.tasks.processing_tasks import process_submission

    origin = RequestOrigin.EXTERNAL.value
    document, supplementary = await save_upload_files(
        [file, supplementary_file], upload_dir, origin=origin,
    )

    submission = Submission(
        user_id=user.id,
        document=document,
        supplementary=supplementary,
        options=options,
        origin=RequestOrigin.EXTERNAL,
        origin_service=service,
        request_id=generate_request_id(),
        api_request={
            "method": request.method,
            "path": request.url.path,
            "service": service,
            "options": options,
            "files": [f.original_name for f in (document, supplementary) if f is not None],
        },
    )

    try:
        task = process_submission.delay(submission.model_dump(mode="json"))
    except Exception as exc:
        logger.error(
            "Submission could not be queued",
            request_id=submission.request_id,
            user_id=user.id,
            service=service,
            error=str(exc),
        )
        await discard_uploads(submission.files)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Submission queue is unavailable, please retry later",
        ) from exc

    logger.info(
        "Submission queued",
        request_id=submission.request_id,
        user_id=user.id,
        service=service,
        celery_task_id=task.id,
    )

    return SubmissionAccepted(request_id=submission.request_id, celery_task_id=task.id)
