from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.auth import AuthContext, require_permission
from src.auth.permissions import IMPORTS_WRITE, LEADS_READ
from src.domain.imports import (
    ImportDownloadError,
    ImportJobConflict,
    ImportJobRejected,
    get_job,
    job_response,
    run_import,
    start_job,
    validate_file_url,
)
from src.domain.ingress import request_id_of
from src.domain.tenancy import audience_workspace
from src.models.imports import ImportCreateRequest, ImportJobResponse
from src.observability import incr_metric, log_event


router = APIRouter(prefix="/api/imports", tags=["imports"])


@router.post("", response_model=ImportJobResponse)
async def create_import(
    data: ImportCreateRequest,
    request: Request,
    auth: AuthContext = Depends(require_permission(IMPORTS_WRITE)),
):
    request_id = request_id_of(request)
    if data.workspace_id and data.workspace_id != auth.workspace_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    if data.audience_id and audience_workspace(data.audience_id) != auth.workspace_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audience not found")
    try:
        validate_file_url(data.file_url)
    except ImportJobRejected as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)

    try:
        job, replay = start_job(
            workspace_id=auth.workspace_id,
            file_url=data.file_url,
            audience_id=data.audience_id,
            created_by=auth.user_id,
        )
    except ImportJobConflict as exc:
        incr_metric("imports.conflict")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "type": "import_in_progress",
                "message": "An import for this file is already processing",
                "job_id": exc.job["id"],
            },
        )

    if replay:
        incr_metric("imports.replayed")
        log_event("import_replayed", request_id=request_id, job_id=job["id"], workspace_id=auth.workspace_id)
        return job_response(job, duplicate=True)

    try:
        return run_import(
            job,
            workspace_id=auth.workspace_id,
            file_url=data.file_url,
            audience_id=data.audience_id,
            request_id=request_id,
        )
    except ImportJobRejected as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail={"type": "import_rejected", "message": exc.message, "job_id": job["id"]},
        )
    except ImportDownloadError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"type": "import_download_failed", "message": str(exc), "job_id": job["id"]},
        )


@router.get("/{job_id}", response_model=ImportJobResponse)
async def get_import(
    job_id: str,
    auth: AuthContext = Depends(require_permission(LEADS_READ)),
):
    job = get_job(auth.workspace_id, job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import job not found")
    return job_response(job)
