"""Shared test fixtures for the Mutate test suite."""

import io
from datetime import datetime, timezone
from typing import Optional

import openpyxl

from mutate.core.models import Configuration, JobModel, JobStatus, OutputFormat
from mutate.core.rules import Rule, parse_rules


def make_rule(rule_type: str, rule_id: str = "r1", **params) -> Rule:
    """Build one typed rule from camelCase wire params."""
    return parse_rules([{"id": rule_id, "type": rule_type, "params": params}])[0]


def make_configuration(
    rules: Optional[list] = None,
    configuration_id: str = "cfg_test",
    organization_id: str = "org_test",
    output_format: Optional[OutputFormat] = None,
    **kwargs,
) -> Configuration:
    """Helper to create a configuration for testing."""
    return Configuration(
        id=configuration_id,
        organization_id=organization_id,
        name="Test configuration",
        rules=rules or [],
        output_format=output_format or OutputFormat(),
        **kwargs,
    )


def make_job(
    job_id: str = "job_test",
    organization_id: str = "org_test",
    status: JobStatus = JobStatus.PENDING,
    **kwargs,
) -> JobModel:
    """Helper to create a job record for testing."""
    return JobModel(
        id=job_id,
        organization_id=organization_id,
        configuration_id=kwargs.pop("configuration_id", "cfg_test"),
        status=status,
        file_name=kwargs.pop("file_name", "input.xlsx"),
        file_size=kwargs.pop("file_size", 1024),
        created_at=kwargs.pop("created_at", datetime.now(timezone.utc)),
        **kwargs,
    )


def workbook_bytes(sheets: dict[str, list[list]]) -> bytes:
    """Create an in-memory .xlsx with one worksheet per entry, in order."""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    wb.close()
    return buffer.getvalue()


class FakePipeline:
    """Just enough of redis-py's pipeline for WATCH/MULTI/EXEC transactions."""

    def __init__(self, store: "FakeRedis"):
        self._store = store
        self._queued: list[tuple[str, str]] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def watch(self, *keys):
        pass

    def get(self, key):
        return self._store.get(key)

    def multi(self):
        self._queued = []

    def set(self, key, value):
        self._queued.append((key, value))

    def execute(self):
        for key, value in self._queued:
            self._store.set(key, value)
        self._queued = []


class FakeRedis:
    """In-memory stand-in for the decode_responses=True Redis client used by the stores."""

    def __init__(self):
        self.data: dict = {}
        self.expirations: dict[str, int] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = str(value)
        return True

    def mget(self, keys):
        return [self.data.get(k) for k in keys]

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    def decr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) - 1)
        return int(self.data[key])

    def expire(self, key, seconds):
        self.expirations[key] = seconds

    def sadd(self, key, *members):
        self.data.setdefault(key, set()).update(members)

    def smembers(self, key):
        return set(self.data.get(key, set()))

    def zadd(self, key, mapping):
        self.data.setdefault(key, {}).update(mapping)

    def zrevrange(self, key, start, end):
        ordered = sorted(self.data.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)
        return [member for member, _ in ordered][start:end + 1]

    def pipeline(self):
        return FakePipeline(self)
