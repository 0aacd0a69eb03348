"""
Automation Data Models

Pydantic models for the render job queue.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field
from enum import Enum

from ..video_assembly.video_models import RenderRequest


class JobStatus(str, Enum):
    """Lifecycle of a queued render job"""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class BackendJobStatus(str, Enum):
    """Status values reported by the render backend"""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RenderJob(BaseModel):
    """A render request tracked by the queue.

    ``request`` is the frozen snapshot taken at enqueue time; the queue only
    ever touches the lifecycle fields.
    """
    id: str
    name: str = "Untitled project"
    created_at: datetime = Field(default_factory=datetime.now)
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)

    backend_handle: Optional[str] = None
    result_url: Optional[str] = None
    error: Optional[str] = None

    # set each time the job enters Processing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    request: RenderRequest


class BackendStatus(BaseModel):
    """One poll result from the render backend"""
    status: BackendJobStatus
    progress: int = Field(default=0, ge=0, le=100)
    result_url: Optional[str] = None
    error: Optional[str] = None


class QueueSnapshot(BaseModel):
    """Persisted form of the queue"""
    version: int = 1
    jobs: List[RenderJob] = Field(default_factory=list)
    saved_at: datetime = Field(default_factory=datetime.now)


class QueueMetrics(BaseModel):
    """Queue counts for status displays"""
    queued_count: int = 0
    processing_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    submitting_count: int = 0
    polling_count: int = 0
    max_concurrent: int = 0

    @property
    def can_start_new(self) -> bool:
        return self.processing_count < self.max_concurrent
