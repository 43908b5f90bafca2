"""Bounded health polling after a release mutation.

Samples every workload instance in the namespace until all of them are
ready in an allowed phase, or until the tick limit runs out. The wait
before the first sample and between samples goes through an injectable
``sleep`` so tests never block.

Verdicts:
    CONVERGED   every monitored instance ready and in an allowed phase
    TIMED_OUT   ticks exhausted without convergence

An instance outside the allowed phases (CrashLoopBackOff, Error, Pending,
...) is a per-tick degradation signal. It is logged and polling carries on;
the names from the last successful batch are kept on
``MonitorResult.degraded``. Only completed jobs and housekeeping instances
are left out of the final status table.

Neither verdict raises. The mutation has already been accepted, so the verdict
is information for the operator, not a failure of the transition.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from relspine.core.errors import RelspineError
from relspine.core.logging import get_logger
from relspine.transition.models import HealthSample
from relspine.transition.protocols import ClusterClient
from relspine.transition.results import (
    InstanceStatus,
    MonitorResult,
    MonitorTick,
    MonitorVerdict,
)

logger = get_logger(__name__)

TickCallback = Callable[[MonitorTick, list[HealthSample]], None]


def to_status(sample: HealthSample) -> InstanceStatus:
    return InstanceStatus(
        name=sample.name,
        ready=sample.ready,
        desired=sample.desired,
        phase=sample.phase,
        restarts=sample.restarts,
        age=sample.age,
    )


class HealthMonitor:
    """Polls a namespace until its workload converges.

    Parameters
    ----------
    cluster
        Read-only cluster collaborator.
    sleep
        Blocking wait, ``time.sleep`` by default.
    housekeeping_markers
        Name fragments of instances that are never monitored (purge jobs).
    """

    def __init__(
        self,
        cluster: ClusterClient,
        sleep: Callable[[float], None] = time.sleep,
        housekeeping_markers: Sequence[str] = ("purge",),
    ) -> None:
        self.cluster = cluster
        self._sleep = sleep
        self.housekeeping_markers = tuple(housekeeping_markers)

    def monitored(self, samples: list[HealthSample]) -> list[HealthSample]:
        """Drop completed jobs and housekeeping instances."""
        return [s for s in samples if not s.is_housekeeping(self.housekeeping_markers)]

    def evaluate(self, samples: list[HealthSample], tick: int = 0) -> MonitorTick:
        """Apply the convergence predicate to one batch of samples."""
        watched = self.monitored(samples)
        not_ready = [s.name for s in watched if not s.is_ready]
        degraded = [s.name for s in watched if not s.phase_allowed]
        return MonitorTick(
            tick=tick,
            converged=bool(watched) and all(s.converged for s in watched),
            instances=len(watched),
            not_ready=not_ready,
            degraded=degraded,
        )

    def sample(self, namespace: str) -> tuple[list[HealthSample], MonitorTick]:
        """One-shot sample and evaluation, no waiting."""
        samples = self.cluster.list_instances(namespace)
        return samples, self.evaluate(samples)

    def watch(
        self,
        namespace: str,
        max_ticks: int = 20,
        tick_interval: float = 60.0,
        initial_delay: float = 30.0,
        on_tick: TickCallback | None = None,
    ) -> MonitorResult:
        """Poll *namespace* at most *max_ticks* times.

        Returns on the first converged tick. A tick whose cluster query fails
        is recorded with its error and counts as not converged.
        """
        result = MonitorResult(namespace=namespace, max_ticks=max_ticks)

        if initial_delay > 0:
            logger.info("monitor.initial_delay", namespace=namespace, seconds=initial_delay)
            self._sleep(initial_delay)

        for tick in range(1, max_ticks + 1):
            try:
                samples = self.cluster.list_instances(namespace)
            except RelspineError as exc:
                logger.warning("monitor.sample_failed", namespace=namespace, tick=tick, error=str(exc))
                entry = MonitorTick(tick=tick, error=str(exc))
                samples = []
            else:
                entry = self.evaluate(samples, tick)
                result.final_instances = [to_status(s) for s in self.monitored(samples)]
                result.degraded = list(entry.degraded)

            result.ticks.append(entry)
            if on_tick is not None:
                on_tick(entry, samples)

            if entry.converged:
                logger.info("monitor.converged", namespace=namespace, tick=tick, instances=entry.instances)
                result.mark_complete(MonitorVerdict.CONVERGED)
                return result

            if entry.degraded:
                logger.warning(
                    "monitor.degraded",
                    namespace=namespace,
                    tick=tick,
                    max_ticks=max_ticks,
                    instances=entry.degraded,
                )
            elif entry.error is None and entry.instances == 0:
                logger.warning("monitor.no_instances", namespace=namespace, tick=tick, max_ticks=max_ticks)
            elif entry.error is None:
                logger.info(
                    "monitor.waiting",
                    namespace=namespace,
                    tick=tick,
                    max_ticks=max_ticks,
                    not_ready=len(entry.not_ready),
                )

            if tick < max_ticks:
                self._sleep(tick_interval)

        logger.warning(
            "monitor.timed_out", namespace=namespace, ticks=max_ticks, degraded=result.degraded
        )
        result.mark_complete(MonitorVerdict.TIMED_OUT)
        return result


__all__ = ["HealthMonitor", "to_status"]
