from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from loanflow.core.settings import Settings, get_settings
from loanflow.db.base import utcnow
from loanflow.services.deep_links import DeepLinkGenerator
from loanflow.services.delivery import DeliveryChannel, get_delivery_channel


@dataclass(frozen=True)
class WorkflowConfig:
    group_id_prefix: str = "LC"
    group_id_width: int = 4
    response_window_periods: int = 7
    period_seconds: int = 86400
    reminder_batch_limit: int = 50
    cas_retry_attempts: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkflowConfig":
        return cls(
            group_id_prefix=settings.group_id_prefix,
            group_id_width=settings.group_id_width,
            response_window_periods=settings.response_window_periods,
            period_seconds=settings.period_seconds,
            reminder_batch_limit=settings.reminder_batch_limit,
            cas_retry_attempts=settings.cas_retry_attempts,
        )


@dataclass
class WorkflowContext:
    """Everything a workflow operation needs besides the database session."""

    config: WorkflowConfig
    delivery: DeliveryChannel
    deep_links: DeepLinkGenerator
    clock: Callable[[], datetime] = utcnow
    rng: random.Random = field(default_factory=random.Random)
    actor: str = "system"

    def now(self) -> datetime:
        return self.clock()


def build_workflow_context(settings: Settings | None = None, *, actor: str = "system") -> WorkflowContext:
    settings = settings or get_settings()
    return WorkflowContext(
        config=WorkflowConfig.from_settings(settings),
        delivery=get_delivery_channel(settings),
        deep_links=DeepLinkGenerator.from_settings(settings),
        actor=actor,
    )
