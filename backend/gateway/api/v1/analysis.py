"""
Document analysis endpoints — direct analysis and backend health.
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse

from gateway.api.deps import (
    get_current_user,
    get_invoker,
    get_processor,
    get_registry,
    get_upload_dir,
)
from gateway.api.schemas.analysis import HealthResponse, VersionHealth
from gateway.core.constants import RequestOrigin
from gateway.core.logging import get_logger
from gateway.pipeline.invoker import BackendInvoker
from gateway.pipeline.models import Submission, User, VersionRegistry
from gateway.pipeline.processor import AnalysisProcessor
from gateway.storage.uploads import save_upload_files

logger = get_logger(__name__)

router = APIRouter(prefix="/analysis", tags=["Analysis"])


# ─── Analyse ──────────────────────────────────────────────
@router.post("")
async def analyse_document(
    request: Request,
    file: UploadFile | None = File(None),
    supplementary_file: UploadFile | None = File(None),
    options: str | None = Form(None),
    user: User = Depends(get_current_user),
    processor: AnalysisProcessor = Depends(get_processor),
    upload_dir: str = Depends(get_upload_dir),
) -> JSONResponse:
    """
    Analyse a PDF with the caller's backend version.

    1. Stores the upload(s) in the temp directory
    2. Runs the processor (version, options, backend call, audit trail)
    3. Returns the filtered backend response with the backend's status
       and its end-to-end headers
    """
    document, supplementary = await save_upload_files([file, supplementary_file], upload_dir)

    submission = Submission(
        user_id=user.id,
        document=document,
        supplementary=supplementary,
        options=options,
        origin=RequestOrigin.DIRECT,
        api_request={
            "method": request.method,
            "path": request.url.path,
            "options": options,
            "files": [f.original_name for f in (document, supplementary) if f is not None],
        },
    )
    outcome = await processor.run(submission, user)

    return JSONResponse(
        outcome.body,
        status_code=outcome.status_code,
        headers={**outcome.headers, "X-Request-ID": outcome.request_id},
    )


# ─── Health ───────────────────────────────────────────────
@router.get("/health", response_model=HealthResponse)
async def backend_health(
    version: str | None = None,
    user: User = Depends(get_current_user),
    registry: VersionRegistry = Depends(get_registry),
    invoker: BackendInvoker = Depends(get_invoker),
) -> HealthResponse:
    """Health of one authorized version, or of all of them."""
    if version:
        if version not in user.authorized_versions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Version '{version}' is not authorized",
            )
        names = [version]
    else:
        names = list(user.authorized_versions) or [registry.default_version]

    results: list[VersionHealth] = []
    for name in names:
        config = registry.get(name)
        if config is None:
            results.append(VersionHealth(version=name, error="Version is not configured"))
            continue
        result = await invoker.check_health(config)
        results.append(VersionHealth(version=name, **result))

    logger.info("Backend health checked", user_id=user.id, versions=names)
    return HealthResponse(versions=results)
