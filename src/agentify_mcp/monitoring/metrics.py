"""Process-wide resource sampling applied to every active client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import psutil

from ..clients import ClientStore
from ..errors import SamplingFailure
from ..scheduling import PeriodicTask, Scheduler, ThreadingScheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MetricsSample:
    cpu_usage: float
    memory_usage: float
    sampled_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpu_usage": self.cpu_usage,
            "memory_usage": self.memory_usage,
            "sampled_at": self.sampled_at.isoformat(),
        }


class MetricsSampler:
    """Samples CPU and memory for this process on a fixed interval.

    One sampler serves every client: each tick takes a single sample and
    merges it into all active entities through the store.
    """

    def __init__(
        self,
        store: ClientStore,
        *,
        interval_seconds: float = 5.0,
        scheduler: Scheduler | None = None,
        process: psutil.Process | None = None,
    ) -> None:
        self._store = store
        self._process = process or psutil.Process()
        self._task = PeriodicTask(
            "metrics-sampler",
            interval_seconds,
            self.tick,
            scheduler or ThreadingScheduler(),
        )
        self.last_sample: MetricsSample | None = None
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task.running

    @property
    def interval_seconds(self) -> float:
        return self._task.interval

    def start(self) -> None:
        self._task.start()
        logger.debug("Metrics sampler started", extra={"interval": self._task.interval})

    def stop(self) -> None:
        self._task.stop()

    def sample(self) -> MetricsSample:
        try:
            with self._process.oneshot():
                cpu = self._process.cpu_percent(interval=None)
                rss = self._process.memory_info().rss
        except (psutil.Error, OSError) as exc:
            raise SamplingFailure(f"Failed to sample process metrics: {exc}") from exc
        return MetricsSample(
            cpu_usage=round(cpu, 2),
            memory_usage=round(rss / 1024 / 1024, 2),
            sampled_at=datetime.now(timezone.utc),
        )

    def tick(self) -> MetricsSample | None:
        try:
            sample = self.sample()
        except SamplingFailure as exc:
            self.failures += 1
            logger.warning("Skipping metrics tick", extra={"error": str(exc)})
            return None

        self.last_sample = sample
        for client_id in self._store.active_ids():
            self._store.apply_metrics(
                client_id,
                cpu_usage=sample.cpu_usage,
                memory_usage=sample.memory_usage,
            )
        return sample


__all__ = ["MetricsSample", "MetricsSampler"]
