"""
Render Backend

Client side of the remote render service: submit a render request, then poll
the returned job handle until the backend reports a terminal status.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from .automation_models import BackendJobStatus, BackendStatus
from ..utils.config import BackendConfig


class RenderBackendError(Exception):
    """Base class for render backend failures"""


class SubmissionError(RenderBackendError):
    """The backend rejected the job or could not be reached to create it. Fatal for the job."""


class TransientError(RenderBackendError):
    """A status poll failed for a reason that may clear up. The job is left untouched."""


class RenderBackend:
    """Contract the render queue relies on"""

    async def submit(self, request) -> str:
        """Create a render job and return the backend handle"""
        raise NotImplementedError

    async def poll_status(self, handle: str) -> BackendStatus:
        raise NotImplementedError


class HttpRenderBackend(RenderBackend):
    """Render backend reached over HTTP (POST /video/generate, GET /video/status/<id>)"""

    def __init__(self, config: BackendConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.base_url = config.base_url.rstrip('/')
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        """Async context manager entry"""
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            headers = {'User-Agent': 'vidwizard-render-queue/1.0'}
            if self.config.auth_token:
                headers['Authorization'] = f"Bearer {self.config.auth_token}"
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
                headers=headers,
            )
            self._owns_session = True
        return self.session

    async def close(self) -> None:
        if self.session and self._owns_session and not self.session.closed:
            await self.session.close()

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        try:
            body = await response.json(content_type=None)
            if isinstance(body, dict) and body.get('error'):
                return str(body['error'])
        except (aiohttp.ClientError, ValueError):
            pass
        return f"HTTP {response.status}"

    def _absolute_url(self, url: Optional[str]) -> Optional[str]:
        if url and url.startswith('/') and self.config.asset_origin:
            return self.config.asset_origin.rstrip('/') + url
        return url

    async def submit(self, request) -> str:
        session = self._ensure_session()
        payload = request.to_payload(self.config.asset_origin)

        try:
            async with session.post(f"{self.base_url}/video/generate", json=payload) as response:
                if response.status >= 400:
                    raise SubmissionError(await self._error_message(response))
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SubmissionError(f"Render backend unreachable: {e}") from e

        handle = data.get('jobId') if isinstance(data, dict) else None
        if not handle:
            raise SubmissionError("Render backend response is missing a job id")

        self.logger.info(f"Render backend accepted job {handle}")
        return str(handle)

    async def poll_status(self, handle: str) -> BackendStatus:
        session = self._ensure_session()

        try:
            async with session.get(f"{self.base_url}/video/status/{handle}") as response:
                if response.status == 404:
                    return BackendStatus(status=BackendJobStatus.FAILED, error="Job not found")
                if response.status >= 400:
                    raise TransientError(await self._error_message(response))
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientError(f"Status poll for {handle} failed: {e}") from e

        try:
            return BackendStatus(
                status=BackendJobStatus(data.get('status', 'processing')),
                progress=max(0, min(100, int(data.get('progress') or 0))),
                result_url=self._absolute_url(data.get('videoUrl')),
                error=data.get('error'),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise TransientError(f"Unreadable status for {handle}: {e}") from e
