"""Pydantic models for configurations, jobs and API request/response schemas."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from mutate.core.rules import Rule

# A cell is a plain scalar; formatting and merge structure are resolved by the reader.
Cell = Union[str, int, float, None]
CellMatrix = list[list[Cell]]


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ExecutionMode(str, Enum):
    SYNC = "sync"
    QUEUED = "queued"


# --- Configuration models ---


class OutputFormat(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["CSV"] = "CSV"
    delimiter: str = Field(default=",", min_length=1)
    encoding: Literal["UTF-8", "UTF-16", "ASCII"] = "UTF-8"
    include_headers: bool = Field(default=True, alias="includeHeaders")


class Configuration(BaseModel):
    """A named, versioned rule list owned by an organization.

    Frozen: a pipeline run always works on a snapshot.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    organization_id: str = Field(alias="organizationId")
    name: str = Field(min_length=1)
    description: Optional[str] = None
    rules: list[Rule]
    output_format: OutputFormat = Field(default_factory=OutputFormat, alias="outputFormat")
    version: int = 1
    is_active: bool = Field(default=True, alias="isActive")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


# --- Interpreter output ---


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one interpreter run. Never mutated after it is returned."""
    matrix: CellMatrix
    applied_rule_descriptions: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    row_count: int = 0
    col_count: int = 0
    aborted: bool = False
    active_sheet: Optional[str] = None

    def execution_log(self) -> dict[str, Any]:
        return {
            "applied": list(self.applied_rule_descriptions),
            "warnings": list(self.warnings),
            "rowCount": self.row_count,
            "colCount": self.col_count,
            "aborted": self.aborted,
        }


# --- Job models ---


class JobModel(BaseModel):
    id: str
    organization_id: str
    configuration_id: str
    status: JobStatus
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    output_ref: Optional[str] = None
    execution_log: Optional[dict] = None
    callback_url: Optional[str] = None
    uid: Optional[str] = None


@dataclass
class TransformationTask:
    """Payload handed to the queue for asynchronous execution."""
    job_id: str
    organization_id: str
    configuration_id: str
    file_data: str  # base64 encoded file bytes
    file_name: str
    callback_url: Optional[str] = None
    uid: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "jobId": self.job_id,
            "organizationId": self.organization_id,
            "configurationId": self.configuration_id,
            "fileData": self.file_data,
            "fileName": self.file_name,
        }
        if self.callback_url:
            payload["callbackUrl"] = self.callback_url
        if self.uid:
            payload["uid"] = self.uid
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TransformationTask":
        return cls(
            job_id=payload["jobId"],
            organization_id=payload["organizationId"],
            configuration_id=payload["configurationId"],
            file_data=payload["fileData"],
            file_name=payload["fileName"],
            callback_url=payload.get("callbackUrl"),
            uid=payload.get("uid"),
        )


@dataclass
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None
    usage: dict = field(default_factory=dict)


# --- API request/response models ---


class ConfigurationSummary(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    version: int
    is_active: bool
    rule_count: int


class ConfigurationImportResponse(BaseModel):
    id: str
    name: str
    version: int
    rule_count: int
    message: str


class PreviewResponse(BaseModel):
    active_sheet: Optional[str] = None
    rows: list[list[Any]] = []
    row_count: int
    col_count: int
    applied: list[str] = []
    warnings: list[str] = []
    aborted: bool = False


class TransformResponse(BaseModel):
    job_id: str
    status: JobStatus
    mode: ExecutionMode
    status_url: str
    download_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    csv_base64: Optional[str] = None
    applied: list[str] = []
    warnings: list[str] = []
    error_message: Optional[str] = None


class JobStatusResponse(BaseModel):
    job_id: str
    configuration_id: str
    status: JobStatus
    progress: int
    file_name: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    download_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    execution_log: Optional[dict] = None
