"""
Automation System

Render job queue, render backend client and queue persistence.
"""

from .render_queue import RenderJobQueue
from .render_backend import RenderBackend, HttpRenderBackend, SubmissionError, TransientError
from .queue_store import JsonFileQueueStore, InMemoryQueueStore
from .automation_models import JobStatus, RenderJob

__all__ = [
    'RenderJobQueue',
    'RenderBackend',
    'HttpRenderBackend',
    'SubmissionError',
    'TransientError',
    'JsonFileQueueStore',
    'InMemoryQueueStore',
    'JobStatus',
    'RenderJob'
]
