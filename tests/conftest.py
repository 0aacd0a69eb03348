import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Ensure repo root on sys.path for imports from anywhere in tests tree.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vidwizard.automation.automation_models import BackendJobStatus, BackendStatus
from vidwizard.automation.render_backend import RenderBackend, SubmissionError, TransientError
from vidwizard.video_assembly.video_models import SingleImageRequest


class FakeRenderBackend(RenderBackend):
    """Scriptable backend: handles are h-<n>, statuses are set per handle by the test."""

    def __init__(self):
        self.submitted: List[str] = []          # request names, in submit order
        self.handles: Dict[str, str] = {}       # request name -> handle
        self.statuses: Dict[str, BackendStatus] = {}
        self.fail_submit: Dict[str, str] = {}   # request name -> error message
        self.poll_errors: Dict[str, int] = {}   # handle -> number of TransientErrors to raise
        self.poll_calls: List[str] = []
        self.submit_delay = 0.0

    async def submit(self, request) -> str:
        self.submitted.append(request.name)
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if request.name in self.fail_submit:
            raise SubmissionError(self.fail_submit[request.name])
        handle = f"h-{len(self.handles) + 1}"
        self.handles[request.name] = handle
        return handle

    async def poll_status(self, handle: str) -> BackendStatus:
        self.poll_calls.append(handle)
        if self.poll_errors.get(handle, 0) > 0:
            self.poll_errors[handle] -= 1
            raise TransientError("connection reset")
        return self.statuses.get(handle, BackendStatus(status=BackendJobStatus.PROCESSING, progress=0))

    def complete(self, name: str, url: Optional[str] = None):
        handle = self.handles[name]
        self.statuses[handle] = BackendStatus(
            status=BackendJobStatus.COMPLETED, progress=100, result_url=url or f"http://cdn/{name}.mp4"
        )

    def fail(self, name: str, error: str = "ffmpeg exited with code 1"):
        self.statuses[self.handles[name]] = BackendStatus(status=BackendJobStatus.FAILED, error=error)

    def progress(self, name: str, percent: int):
        self.statuses[self.handles[name]] = BackendStatus(status=BackendJobStatus.PROCESSING, progress=percent)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_request(name: str) -> SingleImageRequest:
    return SingleImageRequest(
        name=name,
        voiceover_url="http://localhost:3001/temp/voice.mp3",
        voiceover_duration=12.0,
        image_url="http://localhost:3001/uploads/cover.png",
    )


@pytest.fixture
def backend():
    return FakeRenderBackend()


@pytest.fixture
def clock():
    return FakeClock()
