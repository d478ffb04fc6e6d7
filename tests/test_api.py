"""Router tests using TestClient with the core services patched out."""

import base64
from unittest.mock import patch

from fastapi.testclient import TestClient

from mutate.core.errors import AdmissionDenied, ConfigurationImportError
from mutate.core.job_service import SubmissionResult
from mutate.core.models import ExecutionMode, ExecutionResult, JobStatus
from mutate.main import app
from tests.conftest import make_configuration, make_job, make_rule

client = TestClient(app)

ORG = {"X-Organization-Id": "org_test"}


class TestHealth:
    @patch("mutate.api.health.task_queue")
    @patch("mutate.api.health.redis_client")
    def test_ok(self, redis_client, task_queue):
        redis_client.check_connection.return_value = True
        task_queue.queue_stats.return_value = {"name": "file-transformation", "queued": 0}
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @patch("mutate.api.health.redis_client")
    def test_degraded(self, redis_client):
        redis_client.check_connection.return_value = False
        assert client.get("/api/health").json()["status"] == "degraded"


class TestOrganizationHeader:
    def test_missing_header(self):
        assert client.get("/api/configurations").status_code == 422

    def test_invalid_header(self):
        response = client.get("/api/configurations", headers={"X-Organization-Id": "org test!"})
        assert response.status_code == 400


class TestConfigurations:
    @patch("mutate.api.configurations.configuration_store")
    def test_import_json_body(self, configuration_store):
        configuration_store.save_configuration.side_effect = lambda c: c
        document = {
            "name": "Cleanup",
            "rules": [{"id": "r1", "type": "DELETE_COLUMNS", "params": {"columns": ["A"]}}],
            "outputFormat": {"type": "CSV"},
        }
        response = client.post("/api/configurations/import", json=document, headers=ORG)
        assert response.status_code == 200
        body = response.json()
        assert body["rule_count"] == 1
        assert body["id"].startswith("cfg_")
        saved = configuration_store.save_configuration.call_args[0][0]
        assert saved.organization_id == "org_test"

    @patch("mutate.api.configurations.configuration_store")
    def test_import_yaml_file(self, configuration_store):
        configuration_store.save_configuration.side_effect = lambda c: c
        text = (
            "name: From YAML\n"
            "rules:\n"
            "  - id: f1\n"
            "    type: EVALUATE_FORMULAS\n"
            "    params: {enabled: false}\n"
            "outputFormat: {type: CSV}\n"
        )
        response = client.post(
            "/api/configurations/import",
            files={"file": ("cleanup.yaml", text.encode(), "application/x-yaml")},
            headers=ORG,
        )
        assert response.status_code == 200
        assert response.json()["name"] == "From YAML"

    def test_import_non_utf8_file(self):
        response = client.post(
            "/api/configurations/import",
            files={"file": ("cfg.json", b"\xff\xfe{bad", "application/json")},
            headers=ORG,
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_CONFIGURATION"

    def test_import_invalid_document(self):
        response = client.post("/api/configurations/import", json={"name": ""}, headers=ORG)
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "INVALID_CONFIGURATION"
        assert len(detail["errors"]) >= 2

    @patch("mutate.api.configurations.configuration_store")
    def test_get_missing(self, configuration_store):
        configuration_store.get_configuration.return_value = None
        response = client.get("/api/configurations/cfg_nope", headers=ORG)
        assert response.status_code == 404

    @patch("mutate.api.configurations.configuration_store")
    def test_export(self, configuration_store):
        configuration_store.get_configuration.return_value = make_configuration(
            [make_rule("VALIDATE_COLUMNS", expectedCount=3, onFailure="notify")]
        )
        response = client.get("/api/configurations/cfg_test/export", headers=ORG)
        assert response.status_code == 200
        assert response.json()["rules"][0]["params"] == {"expectedCount": 3, "onFailure": "notify"}

    @patch("mutate.api.configurations.configuration_store")
    def test_preview(self, configuration_store):
        configuration_store.get_configuration.return_value = make_configuration(
            [make_rule("DELETE_COLUMNS", columns=["Amount"])]
        )
        response = client.post(
            "/api/configurations/cfg_test/preview",
            files={"file": ("sales.csv", b"Region,Amount\nEast,10\n", "text/csv")},
            headers=ORG,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["rows"] == [["Region"], ["East"]]
        assert body["applied"] == ["Deleted 1 column(s)"]


class TestTransform:
    def _post(self, **data):
        return client.post(
            "/api/transform",
            files={"file": ("sales.csv", b"a,b\n1,2\n", "text/csv")},
            data={"config_id": "cfg_test", **data},
            headers=ORG,
        )

    @patch("mutate.api.transforms.storage")
    @patch("mutate.api.transforms.job_service")
    def test_sync_returns_csv(self, job_service, storage):
        job = make_job(status=JobStatus.COMPLETED, output_ref="org_test/job_test/out.csv",
                       execution_log={"applied": ["x"], "warnings": []})
        job_service.submit_transformation.return_value = SubmissionResult(
            job=job, mode=ExecutionMode.SYNC, result=ExecutionResult(matrix=[]), csv_text="a,b"
        )
        storage.signed_download_url.return_value = ("https://dl/token", job.created_at)
        storage.read_output.return_value = b"a,b"

        response = self._post()
        assert response.status_code == 200
        body = response.json()
        assert base64.b64decode(body["csv_base64"]) == b"a,b"
        assert body["download_url"] == "https://dl/token"
        assert body["applied"] == ["x"]

    @patch("mutate.api.transforms.job_service")
    def test_queued_returns_202(self, job_service):
        job_service.submit_transformation.return_value = SubmissionResult(
            job=make_job(status=JobStatus.PENDING), mode=ExecutionMode.QUEUED
        )
        response = self._post(**{"async": "true"})
        assert response.status_code == 202
        assert response.json()["status_url"] == "/api/jobs/job_test"
        assert job_service.submit_transformation.call_args.kwargs["async_requested"] is True

    @patch("mutate.api.transforms.job_service")
    def test_aborted_sync_is_422(self, job_service):
        job = make_job(status=JobStatus.FAILED, error_message="Transformation aborted: mismatch",
                       execution_log={"applied": [], "warnings": ["mismatch"]})
        job_service.submit_transformation.return_value = SubmissionResult(job=job, mode=ExecutionMode.SYNC)
        response = self._post()
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "TRANSFORMATION_FAILED"
        assert response.json()["detail"]["warnings"] == ["mismatch"]

    @patch("mutate.api.transforms.job_service")
    def test_quota_exceeded_is_429(self, job_service):
        job_service.submit_transformation.side_effect = AdmissionDenied("Monthly conversion limit reached (1000)")
        response = self._post()
        assert response.status_code == 429
        assert response.json()["detail"]["code"] == "QUOTA_EXCEEDED"

    @patch("mutate.api.transforms.job_service")
    def test_validation_error_is_400(self, job_service):
        job_service.submit_transformation.side_effect = ConfigurationImportError(["bad"])
        assert self._post().status_code == 400


class TestJobsAndDownloads:
    @patch("mutate.api.transforms.job_store")
    def test_job_status_with_fresh_url(self, job_store):
        job_store.get_job.return_value = make_job(
            status=JobStatus.COMPLETED, output_ref="org_test/job_test/out.csv"
        )
        response = client.get("/api/jobs/job_test", headers=ORG)
        assert response.status_code == 200
        body = response.json()
        assert body["progress"] == 100
        assert "/api/downloads/" in body["download_url"]
        job_store.get_job.assert_called_once_with("job_test", organization_id="org_test")

    @patch("mutate.api.transforms.job_store")
    def test_job_not_found(self, job_store):
        job_store.get_job.return_value = None
        assert client.get("/api/jobs/job_x", headers=ORG).status_code == 404

    def test_download(self, tmp_path):
        from mutate.core import storage
        from mutate.core.config import settings

        with patch.object(settings, "storage_dir", str(tmp_path)):
            ref = storage.save_output("org_test", "job_test", "out.csv", b"a,b\n1,2")
            url, _ = storage.signed_download_url(ref, 60)
            response = client.get("/api/downloads/" + url.rsplit("/", 1)[1])
        assert response.status_code == 200
        assert response.content == b"a,b\n1,2"
        assert "out.csv" in response.headers["content-disposition"]

    def test_download_bad_token(self):
        assert client.get("/api/downloads/not-a-token").status_code == 403
