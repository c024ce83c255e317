"""
Dispatch mode selection.

Decides when a batch is delivered: inline, in the background, or after the
backend maintenance window closes. Log-only delivery is not a mode; it is
checked when the batch is actually delivered.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ..config import ConfigurationSnapshot


class DispatchKind(str, Enum):
    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class DispatchMode:
    """How and when one batch is delivered."""
    kind: DispatchKind
    background: bool = False
    run_at: Optional[datetime] = None

    @classmethod
    def immediate(cls, background: bool) -> "DispatchMode":
        return cls(kind=DispatchKind.IMMEDIATE, background=background)

    @classmethod
    def deferred(cls, run_at: datetime) -> "DispatchMode":
        return cls(kind=DispatchKind.DEFERRED, background=True, run_at=run_at)

    @property
    def is_deferred(self) -> bool:
        return self.kind is DispatchKind.DEFERRED

    @property
    def label(self) -> str:
        """Short name used for metrics and log fields."""
        if self.is_deferred:
            return "deferred"
        return "background" if self.background else "inline"


def select_mode(config: ConfigurationSnapshot, now: datetime) -> DispatchMode:
    """
    Pick the dispatch mode for a batch.

    The maintenance window wins over the async setting: even a synchronous
    deployment defers until the window has passed.
    """
    if config.maintenance_window_active:
        return DispatchMode.deferred(config.next_slot_after_window or now)

    if config.async_enabled:
        return DispatchMode.immediate(background=True)

    return DispatchMode.immediate(background=False)
