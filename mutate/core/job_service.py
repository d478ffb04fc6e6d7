"""Job service — admission, synchronous execution and queued execution of transformations.

One invocation creates exactly one Job:
1. Look up the configuration (organization-scoped, active only)
2. Check quota and reserve a concurrency slot (nothing is created on denial)
3. Create the Job: PENDING when queued, PROCESSING when run inline
4. Queued: publish the task to RQ; a worker later calls process_task
5. Inline: execute_job runs reader -> interpreter -> CSV -> storage

Once a Job is PROCESSING no exception escapes: failures end the Job in FAILED
with an error message, the concurrency slot is always handed back, and the
monthly unit reserved at admission is refunded unless the Job completed.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from mutate.core import (
    configuration_store,
    csv_writer,
    interpreter,
    job_store,
    quota,
    storage,
    task_queue,
    workbook_reader,
)
from mutate.core.config import settings
from mutate.core.errors import (
    AdmissionDenied,
    ConfigurationNotFound,
    InvalidTransition,
    JobNotFound,
    MutateError,
)
from mutate.core.id_gen import new_job_id
from mutate.core.models import (
    Configuration,
    ExecutionMode,
    ExecutionResult,
    JobModel,
    JobStatus,
    TransformationTask,
)
from mutate.core.rules import formula_evaluation_requested

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """Final state of an executed job plus what the inline response needs."""
    job: JobModel
    result: Optional[ExecutionResult] = None
    csv_text: Optional[str] = None


@dataclass
class SubmissionResult:
    job: JobModel
    mode: ExecutionMode
    result: Optional[ExecutionResult] = None
    csv_text: Optional[str] = None


def decide_mode(
    file_size: int,
    async_requested: bool = False,
    callback_url: Optional[str] = None,
) -> ExecutionMode:
    """Run inline only for small files with no async flag and no callback."""
    if async_requested or callback_url or file_size >= settings.sync_threshold_bytes:
        return ExecutionMode.QUEUED
    return ExecutionMode.SYNC


def job_progress(status: JobStatus) -> int:
    if status == JobStatus.COMPLETED:
        return 100
    if status == JobStatus.PROCESSING:
        return 50
    return 0


def _release_reservation(organization_id: str, completed: bool = False) -> None:
    """Hand back the concurrency slot, and the monthly unit unless the job completed."""
    try:
        quota.release_slot(organization_id)
        if not completed:
            quota.refund_usage(organization_id)
    except Exception as e:
        logger.error(f"Failed to release quota reservation for {organization_id}: {e}")


def _mark_failed(job: JobModel, message: str, execution_log: Optional[dict] = None) -> JobModel:
    """Move a job to FAILED, falling back to an in-memory copy if the store is unreachable."""
    fields: dict[str, Any] = {"error_message": message}
    if execution_log is not None:
        fields["execution_log"] = execution_log
    try:
        return job_store.transition(job.id, JobStatus.FAILED, **fields)
    except MutateError as e:
        logger.error(f"Could not mark job {job.id} failed: {e}")
        return job_store.get_job(job.id) or job
    except Exception as e:
        logger.error(f"Job store unavailable while failing job {job.id}: {e}", exc_info=True)
        return job.model_copy(update={
            "status": JobStatus.FAILED,
            "completed_at": datetime.now(timezone.utc),
            **fields,
        })


def run_pipeline(configuration: Configuration, file_data: bytes, file_name: str) -> ExecutionResult:
    """Read the workbook and apply the configuration's rules. No Job bookkeeping."""
    sheets = workbook_reader.read_workbook(
        file_data,
        file_name,
        evaluate_formulas=formula_evaluation_requested(configuration.rules),
    )
    return interpreter.run(sheets, configuration.rules)


def execute_job(
    job: JobModel,
    configuration: Configuration,
    file_data: bytes,
    file_name: str,
) -> JobOutcome:
    """Run the pipeline for a job already in PROCESSING and finalize it."""
    result: Optional[ExecutionResult] = None
    completed: Optional[JobModel] = None
    try:
        result = run_pipeline(configuration, file_data, file_name)
        execution_log = result.execution_log()
        logger.info(
            f"Job {job.id}: applied {len(result.applied_rule_descriptions)} rule(s), "
            f"{len(result.warnings)} warning(s), {result.row_count}x{result.col_count} output"
        )

        if result.aborted:
            reason = result.warnings[-2] if len(result.warnings) >= 2 else result.warnings[-1]
            failed = _mark_failed(job, f"Transformation aborted: {reason}", execution_log)
            return JobOutcome(failed, result)

        output_format = configuration.output_format
        csv_text = csv_writer.serialize_with_format(result.matrix, output_format)
        data, lossy = csv_writer.encode(csv_text, output_format.encoding)
        if lossy:
            execution_log["warnings"].append(
                f"Some characters could not be encoded as {output_format.encoding} and were replaced"
            )

        output_ref = storage.save_output(
            job.organization_id,
            job.id,
            storage.output_file_name(file_name, output_format.delimiter),
            data,
        )
        completed = job_store.transition(
            job.id,
            JobStatus.COMPLETED,
            output_ref=output_ref,
            execution_log=execution_log,
        )
        return JobOutcome(completed, result, csv_text)

    except Exception as e:
        logger.error(f"Job {job.id} failed: {e}", exc_info=True)
        execution_log = result.execution_log() if result is not None else None
        return JobOutcome(_mark_failed(job, str(e), execution_log), result)

    finally:
        _release_reservation(job.organization_id, completed=completed is not None)


def submit_transformation(
    organization_id: str,
    configuration_id: str,
    file_data: bytes,
    file_name: str,
    async_requested: bool = False,
    callback_url: Optional[str] = None,
    uid: Optional[str] = None,
) -> SubmissionResult:
    """Admit and start one transformation.

    Raises ConfigurationNotFound, WorkbookReadError (unsupported file type) or
    AdmissionDenied before any Job exists. After the Job is created, problems
    are reported through the Job's status instead.
    """
    configuration = configuration_store.get_configuration(organization_id, configuration_id)
    if configuration is None:
        raise ConfigurationNotFound(configuration_id)

    if not workbook_reader.is_supported_file(file_name):
        raise workbook_reader.WorkbookReadError(f"Unsupported file type: {file_name}")

    file_size = len(file_data)
    decision = quota.check_and_reserve(organization_id, file_size)
    if not decision.allowed:
        logger.info(f"Admission denied for {organization_id}: {decision.reason}")
        raise AdmissionDenied(decision.reason or "Quota exceeded")

    mode = decide_mode(file_size, async_requested, callback_url)
    now = datetime.now(timezone.utc)
    job = JobModel(
        id=new_job_id(),
        organization_id=organization_id,
        configuration_id=configuration.id,
        status=JobStatus.PENDING if mode == ExecutionMode.QUEUED else JobStatus.PROCESSING,
        file_name=file_name,
        file_size=file_size,
        created_at=now,
        started_at=None if mode == ExecutionMode.QUEUED else now,
        callback_url=callback_url,
        uid=uid,
    )
    try:
        job_store.create_job(job)
    except Exception:
        _release_reservation(organization_id)
        raise

    if mode == ExecutionMode.QUEUED:
        task = TransformationTask(
            job_id=job.id,
            organization_id=organization_id,
            configuration_id=configuration.id,
            file_data=base64.b64encode(file_data).decode("ascii"),
            file_name=file_name,
            callback_url=callback_url,
            uid=uid,
        )
        try:
            task_queue.enqueue_transformation(task)
        except Exception as e:
            logger.error(f"Failed to enqueue job {job.id}: {e}", exc_info=True)
            job = _mark_failed(job, f"Failed to queue job: {e}")
            _release_reservation(organization_id)
        return SubmissionResult(job=job, mode=mode)

    outcome = execute_job(job, configuration, file_data, file_name)
    return SubmissionResult(
        job=outcome.job, mode=mode, result=outcome.result, csv_text=outcome.csv_text
    )


def process_task(payload: dict) -> dict:
    """RQ entry point for queued jobs.

    The worker that moves the job out of PENDING owns it until it reaches a
    terminal state; duplicate deliveries find the job already taken and stop.
    """
    task = TransformationTask.from_payload(payload)
    try:
        job = job_store.transition(task.job_id, JobStatus.PROCESSING)
    except (InvalidTransition, JobNotFound) as e:
        logger.warning(f"Skipping task for job {task.job_id}: {e}")
        return {"jobId": task.job_id, "status": "skipped"}

    logger.info(f"Processing job {job.id} ({task.file_name}) for {task.organization_id}")

    try:
        configuration = configuration_store.get_configuration(task.organization_id, task.configuration_id)
        if configuration is None:
            raise ConfigurationNotFound(task.configuration_id)
        file_data = base64.b64decode(task.file_data, validate=True)
    except Exception as e:
        logger.error(f"Job {job.id} could not start: {e}", exc_info=True)
        job = _mark_failed(job, str(e))
        _release_reservation(task.organization_id)
        return {"jobId": job.id, "status": job.status.value}

    outcome = execute_job(job, configuration, file_data, task.file_name)
    return {
        "jobId": outcome.job.id,
        "status": outcome.job.status.value,
        "outputRef": outcome.job.output_ref,
    }

