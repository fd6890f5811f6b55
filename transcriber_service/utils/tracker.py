"""
Per-run registry of ephemeral resources (temp files, directories, encoder processes)
"""
import asyncio
import shutil
from pathlib import Path
from typing import List, Optional, Union

from transcriber_service.core.config import Config
from transcriber_service.core.logging import get_logger

logger = get_logger(__name__)

TrackedResource = Union[Path, asyncio.subprocess.Process]


class TempResourceTracker:
    """
    Single point of registration and release for one pipeline run

    Use as an async context manager around the whole run; ``release_all``
    runs exactly once on exit no matter how the block is left.
    """

    def __init__(self, kill_timeout: Optional[float] = None):
        self.kill_timeout = kill_timeout if kill_timeout is not None else Config.ENCODER_KILL_TIMEOUT
        self._resources: List[TrackedResource] = []
        self._released = False

    async def __aenter__(self) -> 'TempResourceTracker':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.release_all()
        return False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def pending(self) -> List[TrackedResource]:
        return list(self._resources)

    def register(self, resource: Union[str, Path, asyncio.subprocess.Process]):
        """Record a resource for later release; duplicates are ignored"""
        if isinstance(resource, str):
            resource = Path(resource)

        if self._released:
            logger.warning("resource_registered_after_release", resource=_describe(resource))

        if any(existing is resource or existing == resource for existing in self._resources):
            return
        self._resources.append(resource)

    async def release_all(self):
        """Remove files and stop processes; safe to call more than once"""
        if self._released:
            return
        self._released = True

        # processes first so nothing is still writing into the files we remove
        resources = sorted(self._resources, key=lambda r: not isinstance(r, asyncio.subprocess.Process))
        self._resources = []

        for resource in resources:
            try:
                if isinstance(resource, Path):
                    self._remove_path(resource)
                else:
                    await self._stop_process(resource)
            except Exception as e:
                logger.warning("resource_release_failed", resource=_describe(resource), error=str(e))

        logger.debug("resources_released", count=len(resources))

    @staticmethod
    def _remove_path(path: Path):
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)

    async def _stop_process(self, process: asyncio.subprocess.Process):
        if process.returncode is not None:
            return

        logger.info("terminating_process", pid=process.pid)
        try:
            process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
        except asyncio.TimeoutError:
            logger.warning("killing_process", pid=process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()


def _describe(resource: TrackedResource) -> str:
    if isinstance(resource, Path):
        return str(resource)
    return f"process:{resource.pid}"
