"""Storage for run manifests."""

from agentflow.storage.backend import FileStorage
from agentflow.storage.history import MAX_HISTORY, RunHistory, generate_run_id

__all__ = ["FileStorage", "RunHistory", "MAX_HISTORY", "generate_run_id"]
