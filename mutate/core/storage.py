"""Output artifact storage and signed, time-limited download URLs.

Artifacts live on local disk under ``settings.storage_dir`` and are
identified by an output reference ``{organization_id}/{job_id}/{file_name}``.
Download tokens are HS256 JWTs carrying the reference in a ``ref`` claim
and the expiry in ``exp``, signed with ``settings.signing_secret``.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import jwt

from mutate.core.config import settings
from mutate.core.errors import StorageError

logger = logging.getLogger(__name__)


def _root() -> Path:
    return settings.storage_path


def _resolve(output_ref: str) -> Path:
    root = _root().resolve()
    path = (root / output_ref).resolve()
    if root not in path.parents:
        raise StorageError(f"Invalid output reference: {output_ref}")
    return path


def output_file_name(source_file_name: str, delimiter: str = ",") -> str:
    """report.xlsx -> report_transformed.csv (tab-delimited output gets .tsv)."""
    base = Path(source_file_name).stem or "output"
    extension = "tsv" if delimiter == "\t" else "csv"
    return f"{base}_transformed.{extension}"


def save_output(organization_id: str, job_id: str, file_name: str, data: bytes) -> str:
    output_ref = f"{organization_id}/{job_id}/{Path(file_name).name}"
    path = _resolve(output_ref)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as e:
        raise StorageError(f"Failed to store output for job {job_id}: {e}") from e
    logger.info(f"Stored {len(data)} bytes for job {job_id} at {output_ref}")
    return output_ref


def read_output(output_ref: str) -> bytes:
    path = _resolve(output_ref)
    if not path.is_file():
        raise StorageError(f"Output not found: {output_ref}")
    return path.read_bytes()


def create_download_token(output_ref: str, ttl_seconds: int) -> tuple[str, datetime]:
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
    payload = {
        "ref": output_ref,
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, settings.signing_secret, algorithm=settings.signing_algorithm)
    return token, expires_at


def signed_download_url(output_ref: str, ttl_seconds: int) -> tuple[str, datetime]:
    """Returns (url, expires_at)."""
    token, expires_at = create_download_token(output_ref, ttl_seconds)
    return f"{settings.download_base_url.rstrip('/')}/{token}", expires_at


def verify_download_token(token: str) -> str:
    """Return the output reference for a valid, unexpired token; raise StorageError otherwise."""
    try:
        payload = jwt.decode(
            token,
            settings.signing_secret,
            algorithms=[settings.signing_algorithm],
            options={"require": ["exp", "ref"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise StorageError("Download link has expired") from e
    except jwt.InvalidTokenError as e:
        raise StorageError(f"Invalid download token: {e}") from e
    return str(payload["ref"])
