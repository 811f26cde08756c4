"""arq worker settings module.

Import path for arq CLI: arq drtrack.workers.settings.WorkerSettings
"""

from __future__ import annotations

from drtrack.workers.jobs import WorkerSettings

__all__ = ["WorkerSettings"]
