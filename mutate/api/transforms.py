"""Transformation endpoints — submit a file, poll job status, download results."""

import base64
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile

from mutate.api.deps import get_organization_id, http_error
from mutate.core import job_service, job_store, storage
from mutate.core.config import settings
from mutate.core.errors import JobNotFound, MutateError, StorageError
from mutate.core.models import (
    ExecutionMode,
    JobModel,
    JobStatus,
    JobStatusResponse,
    TransformResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _status_url(job_id: str) -> str:
    return f"/api/jobs/{job_id}"


def _status_response(job: JobModel) -> JobStatusResponse:
    download_url = expires_at = None
    if job.status == JobStatus.COMPLETED and job.output_ref:
        download_url, expires_at = storage.signed_download_url(
            job.output_ref, settings.async_url_ttl_seconds
        )
    return JobStatusResponse(
        job_id=job.id,
        configuration_id=job.configuration_id,
        status=job.status,
        progress=job_service.job_progress(job.status),
        file_name=job.file_name,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        error_message=job.error_message,
        download_url=download_url,
        expires_at=expires_at,
        execution_log=job.execution_log,
    )


@router.post("/transform", response_model=TransformResponse)
async def transform(
    response: Response,
    file: UploadFile = File(...),
    config_id: str = Form(...),
    async_requested: bool = Form(False, alias="async"),
    callback_url: Optional[str] = Form(None),
    uid: Optional[str] = Form(None),
    org: str = Depends(get_organization_id),
):
    """Transform an uploaded workbook into CSV.

    - **file**: .xlsx/.xlsm/.csv workbook
    - **config_id**: configuration to apply
    - **async**: force queued execution
    - **callback_url**: stored on the job; forces queued execution

    Small files run inline and return the CSV directly (200). Large files,
    async requests and callback requests are queued (202) and must be polled.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="Uploaded file has no name")

    content = await file.read()
    try:
        submission = job_service.submit_transformation(
            org,
            config_id,
            content,
            file.filename,
            async_requested=async_requested,
            callback_url=callback_url,
            uid=uid,
        )
    except MutateError as e:
        raise http_error(e)

    job = submission.job

    if submission.mode == ExecutionMode.QUEUED:
        if job.status == JobStatus.FAILED:
            raise HTTPException(
                status_code=503,
                detail={"code": "QUEUE_UNAVAILABLE", "job_id": job.id, "message": job.error_message},
            )
        response.status_code = 202
        return TransformResponse(
            job_id=job.id,
            status=job.status,
            mode=submission.mode,
            status_url=_status_url(job.id),
        )

    log = job.execution_log or {}
    if job.status != JobStatus.COMPLETED:
        logger.warning(f"Synchronous job {job.id} failed: {job.error_message}")
        raise HTTPException(
            status_code=422,
            detail={
                "code": "TRANSFORMATION_FAILED",
                "job_id": job.id,
                "message": job.error_message,
                "applied": log.get("applied", []),
                "warnings": log.get("warnings", []),
            },
        )

    download_url, expires_at = storage.signed_download_url(job.output_ref, settings.sync_url_ttl_seconds)
    try:
        csv_bytes = storage.read_output(job.output_ref)
    except StorageError as e:
        raise http_error(e)
    return TransformResponse(
        job_id=job.id,
        status=job.status,
        mode=submission.mode,
        status_url=_status_url(job.id),
        download_url=download_url,
        expires_at=expires_at,
        csv_base64=base64.b64encode(csv_bytes).decode("ascii"),
        applied=log.get("applied", []),
        warnings=log.get("warnings", []),
    )


@router.get("/jobs", response_model=list[JobStatusResponse])
async def list_jobs(limit: int = 50, org: str = Depends(get_organization_id)):
    """Most recent jobs for the organization, newest first."""
    return [_status_response(j) for j in job_store.list_jobs(org, limit=limit)]


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job(job_id: str, org: str = Depends(get_organization_id)):
    """Poll a job. Completed jobs carry a freshly signed download URL."""
    job = job_store.get_job(job_id, organization_id=org)
    if job is None:
        raise http_error(JobNotFound(job_id))
    return _status_response(job)


@router.get("/downloads/{token}")
async def download(token: str):
    """Serve a stored artifact. The signed token is the only credential."""
    try:
        output_ref = storage.verify_download_token(token)
    except StorageError as e:
        raise HTTPException(status_code=403, detail={"code": e.code, "message": str(e)})

    try:
        data = storage.read_output(output_ref)
    except StorageError as e:
        raise HTTPException(status_code=404, detail={"code": e.code, "message": str(e)})

    file_name = Path(output_ref).name
    media_type = "text/tab-separated-values" if file_name.endswith(".tsv") else "text/csv"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )
