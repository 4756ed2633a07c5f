"""
Run History - the most recent run manifests, persisted as JSON files.

  {base_path}/
    run_YYYYMMDD_HHMMSS_{uuid}.json
"""

import asyncio
import logging
import uuid
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from agentflow.schemas.run import RunManifest, RunStatus
from agentflow.storage.backend import FileStorage

logger = logging.getLogger(__name__)

MAX_HISTORY = 50


def generate_run_id() -> str:
    """
    Generate a run ID in the format ``run_YYYYMMDD_HHMMSS_{uuid}``.

    Returns:
        Run ID string (e.g., "run_20260206_143022_abc12345")
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"run_{timestamp}_{uuid.uuid4().hex[:8]}"


class RunHistory:
    """Bounded store of RunManifests; saving beyond ``max_runs`` drops the oldest."""

    def __init__(self, base_path: str | Path, max_runs: int = MAX_HISTORY):
        self.storage = FileStorage(base_path)
        self.max_runs = max_runs

    @property
    def base_path(self) -> Path:
        return self.storage.base_path

    def _load_all(self) -> list[RunManifest]:
        manifests = []
        for key in self.storage.list_keys():
            text = self.storage.get_text(key)
            if text is None:
                continue
            try:
                manifests.append(RunManifest.model_validate_json(text))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable run manifest {key}: {e}")
        manifests.sort(key=lambda m: m.timestamp, reverse=True)
        return manifests

    async def save(self, manifest: RunManifest) -> None:
        """Persist a manifest, then trim the history to ``max_runs``."""

        def _save() -> None:
            self.storage.put_text(manifest.id, manifest.model_dump_json(indent=2))
            for stale in self._load_all()[self.max_runs :]:
                self.storage.delete(stale.id)
                logger.debug(f"Dropped run {stale.id} from history")

        await asyncio.to_thread(_save)
        logger.debug(f"Saved run {manifest.id} to history")

    async def load(self, run_id: str) -> RunManifest | None:
        def _load() -> RunManifest | None:
            text = self.storage.get_text(run_id)
            return None if text is None else RunManifest.model_validate_json(text)

        return await asyncio.to_thread(_load)

    async def list_runs(self, status: RunStatus | None = None, limit: int = MAX_HISTORY) -> list[RunManifest]:
        """
        List runs, most recent first.

        Args:
            status: Optional status filter
            limit: Maximum number of runs to return
        """

        def _scan() -> list[RunManifest]:
            runs = self._load_all()
            if status:
                runs = [r for r in runs if r.status == status]
            return runs[:limit]

        return await asyncio.to_thread(_scan)

    async def delete(self, run_id: str) -> bool:
        return await asyncio.to_thread(self.storage.delete, run_id)

    async def clear(self) -> int:
        """Delete every stored run. Returns how many were removed."""

        def _clear() -> int:
            keys = self.storage.list_keys()
            for key in keys:
                self.storage.delete(key)
            return len(keys)

        return await asyncio.to_thread(_clear)
