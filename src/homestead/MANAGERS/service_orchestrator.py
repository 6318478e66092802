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
Reconciliation cycles: load, resolve, plan and execute, one cycle at a time.
"""
import os
import subprocess
import threading
from contextlib import contextmanager
from typing import Dict, List, Tuple

from ..ENGINES.base import ContainerEngine
from ..MODELS.reconciler_settings import ReconcilerSettings
from ..MODELS.reconciliation_plan import ActionKind, CycleReport, ReconciliationPlan
from ..MODELS.service_catalog import ServiceCatalog
from ..MODELS.service_descriptor import InstanceState, ResolvedDescriptor
from ..PARSERS.catalog_parser import CatalogParser
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..RUNNERS.environment_resolver import EnvironmentResolver
from .environment_manager import EnvironmentLayers, EnvironmentManager
from .plan_executor import PlanExecutor
from .reconciler import Reconciler
from .volume_manager import VolumeManager
from ..UTILS.logger import get_logger
from ..errors import ConfigError, CycleInProgressError, ResolutionError

logger = get_logger(__name__)


class ServiceOrchestrator:
    """
    Runs reconciliation cycles for one project against one engine.
    """
    def __init__(self, settings: ReconcilerSettings, engine: ContainerEngine, base_dir: str = "."):
        """
        Initializes the orchestrator.

        :param settings: Paths and limits for the cycle.
        :param engine: Engine adapter.
        :param base_dir: Directory relative paths in ``settings`` are resolved against.
        """
        self.settings = settings
        self.engine = engine
        self.base_dir = base_dir
        self.parser = CatalogParser()
        self.dependencies = DependencyResolver()
        self.env_manager = EnvironmentManager(base_dir)
        data_dir = os.path.join(base_dir, settings.data_dir)
        self.resolver = EnvironmentResolver(data_dir)
        self.volume_manager = VolumeManager(data_dir)
        self.reconciler = Reconciler(self.dependencies)
        self._cycle_lock = threading.Lock()

    @contextmanager
    def _cycle(self):
        if not self._cycle_lock.acquire(blocking=False):
            raise CycleInProgressError("a reconciliation cycle is already running")
        try:
            yield
        finally:
            self._cycle_lock.release()

    def load(self) -> Tuple[ServiceCatalog, EnvironmentLayers]:
        """
        Loads the catalog and the environment layers for one cycle.

        :raises ConfigError: If the catalog is invalid.
        """
        catalog = self.parser.parse(os.path.join(self.base_dir, self.settings.catalog_path))
        layers = self.env_manager.load_layers(
            self.settings.env_files,
            include_process_env=self.settings.include_process_env,
        )
        return catalog, layers

    def resolve(self, catalog: ServiceCatalog,
                layers: EnvironmentLayers) -> Tuple[List[ResolvedDescriptor], Dict[str, str]]:
        """
        Resolves every descriptor. A service that fails resolution is set
        aside when nothing depends on it; otherwise the cycle is aborted.

        :return: Resolved descriptors in catalog order, and unresolved services with their error.
        :raises ResolutionError: If a service with dependents cannot be resolved.
        """
        graph = self.dependencies.graph_of(catalog)
        resolved: List[ResolvedDescriptor] = []
        unresolved: Dict[str, str] = {}
        for descriptor in catalog.descriptors():
            try:
                resolved.append(self.resolver.resolve(descriptor, layers))
            except ResolutionError as e:
                dependents = self.dependencies.dependents_of(graph, descriptor.name)
                if dependents:
                    logger.error(f"Aborting cycle: {e} (needed by {', '.join(sorted(dependents))})")
                    raise
                logger.error(f"Skipping {descriptor.name}: {e}")
                unresolved[descriptor.name] = str(e)
        return resolved, unresolved

    def snapshot(self) -> List[InstanceState]:
        """Fetches the running instances once and copies them for planning."""
        return [inst.model_copy(deep=True) for inst in self.engine.list_running()]

    def _plan(self) -> ReconciliationPlan:
        catalog, layers = self.load()
        resolved, unresolved = self.resolve(catalog, layers)
        return self.reconciler.plan(resolved, self.snapshot(), unresolved)

    def plan(self) -> ReconciliationPlan:
        """
        Computes the plan for a cycle without executing it.
        """
        with self._cycle():
            return self._plan()

    def _executor(self, pull_images: bool = False) -> PlanExecutor:
        return PlanExecutor(
            self.engine,
            max_workers=self.settings.max_workers,
            action_timeout=self.settings.action_timeout,
            pull_images=pull_images,
        )

    def _reconcile(self, pull_images: bool = False) -> CycleReport:
        plan = self._plan()
        logger.info("Plan: " + ", ".join(f"{count} {kind}" for kind, count in plan.summary().items() if count))
        self.volume_manager.prepare_volumes(
            a.descriptor for a in plan.actions
            if a.kind in (ActionKind.CREATE, ActionKind.RECREATE)
        )
        report = self._executor(pull_images).execute(plan)
        self._log_report(report)
        return report

    def setup(self) -> CycleReport:
        """
        Runs one full reconciliation cycle.
        """
        with self._cycle():
            return self._reconcile()

    def update(self) -> CycleReport:
        """
        Stops every managed service, refreshes images and runs one full
        reconciliation cycle. With ``git_pull`` set, the configuration
        checkout is updated first.
        """
        with self._cycle():
            if self.settings.git_pull:
                self.git_pull()
            # validate before tearing anything down
            catalog, layers = self.load()
            self.resolve(catalog, layers)

            teardown = self.down()
            report = self._reconcile(pull_images=True)
            return teardown.merge(report)

    def down(self) -> CycleReport:
        """
        Stops every managed running instance, dependents first.
        Callers hold the cycle lock.
        """
        stop_all = self.reconciler.plan([], self.snapshot())
        logger.info(f"Stopping {len(stop_all.actions)} running service(s)")
        return self._executor().execute(stop_all)

    def git_pull(self) -> None:
        """
        Fast-forwards the git checkout holding the catalog.

        :raises ConfigError: If git fails.
        """
        repo_dir = os.path.dirname(os.path.abspath(os.path.join(self.base_dir, self.settings.catalog_path)))
        logger.info(f"Updating configuration checkout in {repo_dir}")
        try:
            result = subprocess.run(
                ["git", "pull", "--ff-only"],
                cwd=repo_dir,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise ConfigError(f"cannot run git: {e}")
        if result.returncode != 0:
            raise ConfigError(f"git pull failed: {result.stderr.strip() or result.stdout.strip()}")
        logger.debug(result.stdout.strip())

    def ps(self) -> Dict[str, str]:
        """
        Returns the managed running instances and their images.
        """
        return {inst.name: inst.image for inst in self.engine.list_running()}

    def _log_report(self, report: CycleReport) -> None:
        if report.ok:
            logger.info(f"Cycle finished: {len(report.outcomes)} service(s) reconciled")
        else:
            logger.warning(
                f"Cycle finished with {len(report.failed)} failed and {len(report.blocked)} blocked service(s)"
            )

