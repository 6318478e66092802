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
Planning: compares desired descriptors with what the engine reports running.
"""
from typing import Dict, Iterable, List, Optional

from ..MODELS.service_descriptor import InstanceState, ResolvedDescriptor
from ..MODELS.reconciliation_plan import ActionKind, PlannedAction, ReconciliationPlan
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..UTILS.logger import get_logger

logger = get_logger(__name__)


class Reconciler:
    """
    Computes the minimal set of actions that brings the engine in line with
    the desired descriptors. Planning has no side effects; execution is left
    to the PlanExecutor.
    """
    def __init__(self, resolver: Optional[DependencyResolver] = None):
        self.resolver = resolver or DependencyResolver()

    def plan(self,
             desired: Iterable[ResolvedDescriptor],
             current: Iterable[InstanceState],
             unresolved: Optional[Dict[str, str]] = None) -> ReconciliationPlan:
        """
        Builds the plan for one cycle.

        :param desired: Resolved descriptors in catalog order.
        :param current: Instances the engine reports as running.
        :param unresolved: Services that failed resolution, mapped to the error.
            They get no action, and their running instances are left alone.
        :return: The reconciliation plan.
        """
        desired = list(desired)
        unresolved = dict(unresolved or {})
        snapshot = {inst.name: inst.model_copy(deep=True) for inst in current}
        wanted = {d.name: d for d in desired}

        actions: List[PlannedAction] = []
        actions.extend(self._orphan_stops(snapshot, wanted, unresolved))

        graph = {d.name: list(d.depends_on) for d in desired}
        for name in self.resolver.order(graph, strict=False):
            descriptor = wanted[name]
            requires = [dep for dep in descriptor.depends_on if dep in wanted]
            instance = snapshot.get(name)
            if instance is None:
                kind, changes = ActionKind.CREATE, []
            else:
                changes = self.diff(descriptor, instance)
                kind = ActionKind.RECREATE if changes else ActionKind.NOOP
            actions.append(PlannedAction(
                service=name,
                kind=kind,
                descriptor=descriptor,
                requires=requires,
                changes=changes,
            ))

        plan = ReconciliationPlan(actions=actions, unresolved=unresolved)
        logger.debug(f"Planned {plan.summary()} with {len(unresolved)} unresolved service(s)")
        return plan

    def _orphan_stops(self,
                      snapshot: Dict[str, InstanceState],
                      wanted: Dict[str, ResolvedDescriptor],
                      unresolved: Dict[str, str]) -> List[PlannedAction]:
        """
        Stops for running instances with no descriptor, dependents first.
        A stop waits for the stops of the orphans that depend on it.
        """
        orphans = {
            name: list(inst.depends_on)
            for name, inst in snapshot.items()
            if name not in wanted and name not in unresolved
        }
        if not orphans:
            return []

        dependents: Dict[str, List[str]] = {name: [] for name in orphans}
        for name, deps in orphans.items():
            for dep in deps:
                if dep in dependents:
                    dependents[dep].append(name)

        order = list(reversed(self.resolver.order(orphans, strict=False)))
        for name in order:
            logger.debug(f"Orphaned instance {name} will be stopped")
        return [
            PlannedAction(service=name, kind=ActionKind.STOP, requires=dependents[name])
            for name in order
        ]

    @staticmethod
    def diff(desired: ResolvedDescriptor, instance: InstanceState) -> List[str]:
        """
        Returns the names of the fields where the running instance differs
        from the descriptor. Volume and port order is not significant.
        """
        changes = []
        if desired.image != instance.image:
            changes.append("image")
        if dict(desired.environment) != dict(instance.environment):
            changes.append("environment")
        if _volume_key(desired.volumes) != _volume_key(instance.volumes):
            changes.append("volumes")
        if _port_key(desired.ports) != _port_key(instance.ports):
            changes.append("ports")
        return changes


def _volume_key(volumes):
    return sorted((v.host_path, v.container_path, v.read_only) for v in volumes)


def _port_key(ports):
    return sorted((p.host_ip or "", p.host_port, p.container_port, p.protocol) for p in ports)


def plan(desired: Iterable[ResolvedDescriptor],
         current: Iterable[InstanceState],
         unresolved: Optional[Dict[str, str]] = None) -> ReconciliationPlan:
    """Shortcut for ``Reconciler().plan(...)``."""
    return Reconciler().plan(desired, current, unresolved)
