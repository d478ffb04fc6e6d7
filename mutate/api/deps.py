"""FastAPI dependencies for organization scoping and error translation."""

from fastapi import Header, HTTPException

from mutate.core.errors import (
    AdmissionDenied,
    ConfigurationImportError,
    ConfigurationNotFound,
    JobNotFound,
    MutateError,
)


async def get_organization_id(
    x_organization_id: str = Header(..., min_length=1, max_length=64, description="Organization ID")
) -> str:
    """Extract and validate the organization id from the X-Organization-Id header.

    Raises 400 if the format is invalid.
    """
    if not x_organization_id.replace("_", "").replace("-", "").isalnum():
        raise HTTPException(
            status_code=400,
            detail=f"Invalid organization ID format: '{x_organization_id}'. "
                   f"Must be alphanumeric with underscores or hyphens."
        )
    return x_organization_id


def http_error(exc: MutateError) -> HTTPException:
    """Map a service error to the HTTP status the API reports for it."""
    if isinstance(exc, ConfigurationImportError):
        return HTTPException(status_code=400, detail={"code": exc.code, "errors": exc.errors})
    if isinstance(exc, (ConfigurationNotFound, JobNotFound)):
        return HTTPException(status_code=404, detail={"code": exc.code, "message": str(exc)})
    if isinstance(exc, AdmissionDenied):
        return HTTPException(status_code=429, detail={"code": exc.code, "message": exc.reason})
    return HTTPException(status_code=400, detail={"code": exc.code, "message": str(exc)})
