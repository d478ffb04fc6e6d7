"""UUID v7 identifiers for jobs and configurations.

UUIDv7 ids sort by creation time, so listing keys in id order also lists
them oldest first.
"""

from uuid_extensions import uuid7

JOB_PREFIX = "job_"
CONFIGURATION_PREFIX = "cfg_"


def generate_id(prefix: str = "") -> str:
    """Generate a hyphen-free UUID v7 string with optional prefix.

    Returns:
        String like "job_01926f4e8b7d7a8e9c0d1e2f3a4b5c6d"
    """
    uid = uuid7().hex
    return f"{prefix}{uid}" if prefix else uid


def new_job_id() -> str:
    return generate_id(JOB_PREFIX)


def new_configuration_id() -> str:
    return generate_id(CONFIGURATION_PREFIX)
