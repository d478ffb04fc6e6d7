"""Organization-scoped configuration endpoints.

Import (JSON body or uploaded JSON/YAML file), listing, export,
deactivation and a dry-run preview against an uploaded workbook.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile

from mutate.api.deps import get_organization_id, http_error
from mutate.core import configuration_io, configuration_store, job_service
from mutate.core.errors import ConfigurationNotFound, MutateError
from mutate.core.models import (
    ConfigurationImportResponse,
    ConfigurationSummary,
    PreviewResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _summary(configuration) -> ConfigurationSummary:
    return ConfigurationSummary(
        id=configuration.id,
        name=configuration.name,
        description=configuration.description,
        version=configuration.version,
        is_active=configuration.is_active,
        rule_count=len(configuration.rules),
    )


async def _read_document(request: Request):
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise HTTPException(status_code=400, detail="Multipart import requires a 'file' field")
        return configuration_io.loads_document(await upload.read(), upload.filename)
    return configuration_io.loads_document(await request.body())


@router.post("/configurations/import", response_model=ConfigurationImportResponse)
async def import_configuration(
    request: Request,
    configuration_id: Optional[str] = Query(None, description="Replace this configuration instead of creating one"),
    org: str = Depends(get_organization_id),
):
    """Import a portable configuration document.

    Send the document as a JSON body, or upload a .json/.yaml file in a
    multipart ``file`` field. Every validation problem is reported at once.
    """
    try:
        document = await _read_document(request)
        configuration = configuration_io.parse_document(document, org, configuration_id=configuration_id)
    except MutateError as e:
        raise http_error(e)

    try:
        stored = configuration_store.save_configuration(configuration)
    except PermissionError as e:
        logger.warning(f"Rejected import over configuration {configuration_id} from {org}")
        raise HTTPException(status_code=403, detail=str(e))

    return ConfigurationImportResponse(
        id=stored.id,
        name=stored.name,
        version=stored.version,
        rule_count=len(stored.rules),
        message=f"Configuration imported with {len(stored.rules)} rule(s)",
    )


@router.get("/configurations", response_model=list[ConfigurationSummary])
async def list_configurations(
    include_inactive: bool = False,
    org: str = Depends(get_organization_id),
):
    """List configurations for the organization."""
    return [_summary(c) for c in configuration_store.list_configurations(org, include_inactive)]


@router.get("/configurations/{configuration_id}")
async def get_configuration(configuration_id: str, org: str = Depends(get_organization_id)):
    """Full configuration, rules included."""
    configuration = configuration_store.get_configuration(org, configuration_id, include_inactive=True)
    if configuration is None:
        raise http_error(ConfigurationNotFound(configuration_id))
    return configuration.model_dump(mode="json", by_alias=True)


@router.get("/configurations/{configuration_id}/export")
async def export_configuration(configuration_id: str, org: str = Depends(get_organization_id)):
    configuration = configuration_store.get_configuration(org, configuration_id, include_inactive=True)
    if configuration is None:
        raise http_error(ConfigurationNotFound(configuration_id))
    return configuration_io.export_document(configuration)


@router.delete("/configurations/{configuration_id}")
async def deactivate_configuration(configuration_id: str, org: str = Depends(get_organization_id)):
    if not configuration_store.deactivate_configuration(org, configuration_id):
        raise http_error(ConfigurationNotFound(configuration_id))
    return {"id": configuration_id, "is_active": False}


@router.post("/configurations/{configuration_id}/preview", response_model=PreviewResponse)
async def preview_configuration(
    configuration_id: str,
    file: UploadFile = File(...),
    limit: int = Query(50, ge=1, le=1000, description="Maximum number of output rows returned"),
    org: str = Depends(get_organization_id),
):
    """Run the configuration against a workbook without creating a job.

    Nothing is stored and no quota is consumed.
    """
    configuration = configuration_store.get_configuration(org, configuration_id)
    if configuration is None:
        raise http_error(ConfigurationNotFound(configuration_id))

    content = await file.read()
    try:
        result = job_service.run_pipeline(configuration, content, file.filename or "upload.xlsx")
    except MutateError as e:
        raise http_error(e)

    return PreviewResponse(
        active_sheet=result.active_sheet,
        rows=result.matrix[:limit],
        row_count=result.row_count,
        col_count=result.col_count,
        applied=list(result.applied_rule_descriptions),
        warnings=list(result.warnings),
        aborted=result.aborted,
    )
