from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.config import Settings


@dataclass(slots=True)
class PipelineContext:
    """Runtime values fixed once at the start of a sync run."""

    run_id: str
    now: datetime
    dedup_window: timedelta
    settings: Settings
    dry_run: bool = False

    @property
    def window_start(self) -> datetime:
        return self.now - self.dedup_window
