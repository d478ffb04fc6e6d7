"""Exception types raised by the core services.

Interpreter data problems are never raised; they are collected as warnings on
the ExecutionResult. Everything here is a caller-side or environment problem.
"""

from typing import Optional


class MutateError(Exception):
    """Base class for all service errors."""

    code = "INTERNAL_ERROR"


class ConfigurationImportError(MutateError):
    """A configuration document failed validation."""

    code = "INVALID_CONFIGURATION"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid configuration")


class ConfigurationNotFound(MutateError):
    code = "CONFIGURATION_NOT_FOUND"

    def __init__(self, configuration_id: str):
        self.configuration_id = configuration_id
        super().__init__(f"Configuration '{configuration_id}' not found or inactive")


class AdmissionDenied(MutateError):
    """Quota, concurrency or file-size policy rejected the request."""

    code = "QUOTA_EXCEEDED"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class JobNotFound(MutateError):
    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job '{job_id}' not found")


class InvalidTransition(MutateError):
    code = "INVALID_TRANSITION"

    def __init__(self, job_id: str, current: Optional[str], target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: cannot move from {current} to {target}")


class StorageError(MutateError):
    code = "STORAGE_ERROR"
