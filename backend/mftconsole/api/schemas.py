from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel

from mftconsole.models.job import Job, JobHistory
from mftconsole.models.transfer_config import TransferConfig
from mftconsole.services import job_store

RunStatus = Literal["pending", "running", "completed", "failed", "cancelled"]


# -------------------------
# API models (camelCase, as the pages' scripts read them)
# -------------------------

class ConfigResponse(BaseModel):
    id: int
    name: str
    sourceType: str
    sourcePath: str
    destinationType: str
    destinationPath: str
    filePattern: str
    archiveEnabled: bool
    skipProcessedFiles: bool
    createdBy: int
    updatedAt: str


class JobResponse(BaseModel):
    id: int
    name: str
    displayName: str
    configId: int
    configIds: list[int]
    schedule: str
    enabled: bool
    lastRun: Optional[str] = None
    nextRun: Optional[str] = None
    webhookEnabled: bool = False
    notifyOnSuccess: bool = True
    notifyOnFailure: bool = True


class JobRunResponse(BaseModel):
    id: int
    jobId: int
    jobName: str
    configId: int
    configName: str
    status: RunStatus
    startTime: str
    endTime: Optional[str] = None
    bytesTransferred: int = 0
    filesTransferred: int = 0
    errorMessage: str = ""


class HistoryPageResponse(BaseModel):
    items: list[JobRunResponse]
    page: int
    pageSize: int
    total: int
    totalPages: int
    search: str = ""


def config_response(config: TransferConfig) -> ConfigResponse:
    return ConfigResponse(
        id=config.id,
        name=config.name,
        sourceType=config.source_type,
        sourcePath=config.source.path,
        destinationType=config.destination_type,
        destinationPath=config.destination.path,
        filePattern=config.file_pattern,
        archiveEnabled=config.archive_enabled,
        skipProcessedFiles=config.skip_processed_files,
        createdBy=config.created_by,
        updatedAt=config.updated_at.isoformat(),
    )


def job_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        name=job.name,
        displayName=job_store.display_name(job),
        configId=job.config_id,
        configIds=job.config_ids,
        schedule=job.schedule,
        enabled=job.enabled,
        lastRun=job.last_run.isoformat() if job.last_run else None,
        nextRun=job.next_run.isoformat() if job.next_run else None,
        webhookEnabled=job.webhook_enabled,
        notifyOnSuccess=job.notify_on_success,
        notifyOnFailure=job.notify_on_failure,
    )


def run_response(run: JobHistory) -> JobRunResponse:
    return JobRunResponse(
        id=run.id,
        jobId=run.job_id,
        jobName=run.job_name,
        configId=run.config_id,
        configName=run.config_name,
        status=run.status,
        startTime=run.start_time.isoformat(),
        endTime=run.end_time.isoformat() if run.end_time else None,
        bytesTransferred=run.bytes_transferred,
        filesTransferred=run.files_transferred,
        errorMessage=run.error_message,
    )
