# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Executes a reconciliation plan against a container engine with a bounded
worker pool, gating each action on the success of its dependencies.
"""
import time
from concurrent.futures import ThreadPoolExecutor, Future, wait, FIRST_COMPLETED
from typing import Dict, List, Optional, Tuple

from ..ENGINES.base import ContainerEngine, EngineResult
from ..MODELS.reconciliation_plan import (
    ActionKind, ActionStatus, ActionOutcome, CycleReport, PlannedAction, ReconciliationPlan,
)
from ..UTILS.logger import get_logger
from ..errors import ActionError

logger = get_logger(__name__)


class PlanExecutor:
    """
    Runs the actions of a plan. Orphan stops run first, then the catalog
    actions. Within each phase independent actions run concurrently, an
    action starts only once every action it requires has succeeded, and a
    failure blocks its direct and transitive dependents. Failed actions are
    reported, never retried.
    """
    def __init__(self,
                 engine: ContainerEngine,
                 max_workers: int = 4,
                 action_timeout: float = 300.0,
                 pull_images: bool = False):
        """
        :param engine: Engine adapter that performs the calls.
        :param max_workers: Upper bound on concurrent engine calls.
        :param action_timeout: Seconds before an action is reported as failed.
        :param pull_images: Pull the image before every create or recreate.
        """
        self.engine = engine
        self.max_workers = max(1, max_workers)
        self.action_timeout = action_timeout
        self.pull_images = pull_images

    def execute(self, plan: ReconciliationPlan) -> CycleReport:
        """
        Executes the plan.

        :param plan: The plan computed by the Reconciler.
        :return: Per-service outcomes, in plan order.
        """
        report = CycleReport()
        for name, error in plan.unresolved.items():
            logger.error(f"{name}: not reconciled, {error}")
            report.record(ActionOutcome(service=name, status=ActionStatus.FAILED, error=error))

        stops = [a for a in plan.actions if a.kind == ActionKind.STOP]
        others = [a for a in plan.actions if a.kind != ActionKind.STOP]
        self._run_phase(stops, report)
        self._run_phase(others, report)

        ordered = CycleReport()
        for action in plan.actions:
            ordered.record(report.outcomes[action.service])
        for name in plan.unresolved:
            ordered.record(report.outcomes[name])
        return ordered

    def _run_phase(self, actions: List[PlannedAction], report: CycleReport) -> None:
        if not actions:
            return
        names = {a.service for a in actions}
        pending: List[PlannedAction] = list(actions)
        running: Dict[Future, Tuple[PlannedAction, float]] = {}

        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="homestead-action")
        try:
            while True:
                pending = self._dispatch(pending, names, running, report, pool)
                if not running:
                    break
                done, _ = wait(list(running), timeout=self._next_deadline(running), return_when=FIRST_COMPLETED)
                for future in done:
                    action, _ = running.pop(future)
                    report.record(self._outcome(action, future))
                self._expire(running, report)

            for action in pending:
                report.record(ActionOutcome(
                    service=action.service, kind=action.kind, status=ActionStatus.BLOCKED,
                    error="dependencies never completed",
                ))
        finally:
            # timed-out engine calls cannot be cancelled; let their threads finish on their own
            pool.shutdown(wait=False, cancel_futures=True)

    def _dispatch(self, pending, names, running, report, pool) -> List[PlannedAction]:
        """
        Starts every pending action whose requirements are met and blocks
        those whose requirements failed. Repeats until nothing changes, so
        no-ops unlock their dependents in the same pass.
        """
        changed = True
        while changed:
            changed = False
            still_pending = []
            for action in pending:
                requires = [dep for dep in action.requires if dep in names]
                statuses = {dep: report.status_of(dep) for dep in requires}
                broken = [dep for dep, status in statuses.items()
                          if status in (ActionStatus.FAILED, ActionStatus.BLOCKED)]
                if broken:
                    logger.warning(f"{action.service}: blocked by {', '.join(broken)}")
                    report.record(ActionOutcome(
                        service=action.service, kind=action.kind, status=ActionStatus.BLOCKED,
                        error=f"dependency {broken[0]} {statuses[broken[0]].value}",
                    ))
                    changed = True
                elif all(status == ActionStatus.SUCCEEDED for status in statuses.values()):
                    if action.kind == ActionKind.NOOP:
                        logger.debug(f"{action.service}: up to date")
                        report.record(ActionOutcome(
                            service=action.service, kind=action.kind, status=ActionStatus.SUCCEEDED,
                        ))
                    else:
                        logger.info(f"{action.service}: {action.kind.value}"
                                    + (f" ({', '.join(action.changes)} changed)" if action.changes else ""))
                        running[pool.submit(self._perform, action)] = (action, time.monotonic())
                    changed = True
                else:
                    still_pending.append(action)
            pending = still_pending
        return pending

    def _next_deadline(self, running) -> float:
        now = time.monotonic()
        earliest = min(started for _, started in running.values())
        return max(0.0, earliest + self.action_timeout - now)

    def _expire(self, running, report: CycleReport) -> None:
        now = time.monotonic()
        for future, (action, started) in list(running.items()):
            if now - started >= self.action_timeout and not future.done():
                running.pop(future)
                logger.error(f"{action.service}: {action.kind.value} timed out after {self.action_timeout:g}s")
                report.record(ActionOutcome(
                    service=action.service, kind=action.kind, status=ActionStatus.FAILED,
                    error=f"timed out after {self.action_timeout:g}s",
                ))

    def _outcome(self, action: PlannedAction, future: Future) -> ActionOutcome:
        error = future.exception()
        if error is None:
            logger.info(f"{action.service}: {action.kind.value} succeeded")
            return ActionOutcome(service=action.service, kind=action.kind, status=ActionStatus.SUCCEEDED)
        logger.error(f"{action.service}: {action.kind.value} failed: {error}")
        return ActionOutcome(service=action.service, kind=action.kind, status=ActionStatus.FAILED, error=str(error))

    def _perform(self, action: PlannedAction) -> None:
        """
        Runs the engine calls for one action in a worker thread.

        :raises ActionError: If an engine call reports failure.
        """
        if action.kind in (ActionKind.STOP, ActionKind.RECREATE):
            self._check(self.engine.stop(action.service), action.service, "stop")
        if action.kind in (ActionKind.CREATE, ActionKind.RECREATE):
            if self.pull_images:
                self._check(self.engine.pull(action.descriptor.image), action.service, "image")
            self._check(self.engine.start(action.descriptor), action.service, "start")

    @staticmethod
    def _check(result: Optional[EngineResult], service: str, field: str) -> None:
        if result is None or not result.success:
            detail = result.detail if result is not None else "no result from engine"
            raise ActionError(detail or "engine call failed", service=service, field=field)
