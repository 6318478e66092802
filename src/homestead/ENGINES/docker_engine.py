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
Container engine adapter backed by the Docker Engine API.

Containers are labelled with the project and service name, plus a JSON copy
of the descriptor they were started from. The next cycle reads that label
back to diff against, so engine-added details (image default environment,
generated mounts) never show up as drift.
"""
import logging
from typing import Any, Dict, List, Optional

import docker
from docker.errors import DockerException, NotFound
from docker.utils import parse_repository_tag
from pydantic import ValidationError
from tenacity import (
    retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log,
)

from .base import ContainerEngine, EngineResult
from ..MODELS.service_descriptor import InstanceState, ResolvedDescriptor, RestartPolicy
from ..UTILS.logger import get_logger
from ..errors import ActionError

logger = get_logger(__name__)

LABEL_PROJECT = "homestead.project"
LABEL_SERVICE = "homestead.service"
LABEL_SPEC = "homestead.spec"

RESTART_POLICIES = {
    RestartPolicy.NEVER: {"Name": "no"},
    RestartPolicy.ON_FAILURE: {"Name": "on-failure"},
    RestartPolicy.UNLESS_STOPPED: {"Name": "unless-stopped"},
}


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, DockerException) and not isinstance(exc, NotFound)


class DockerEngine(ContainerEngine):
    """
    Runs services as Docker containers named ``<project>-<service>``.
    """
    def __init__(self, project: str = "homestead", client: Optional[docker.DockerClient] = None,
                 stop_timeout: int = 10, pull_attempts: int = 3):
        """
        :param project: Label value that scopes which containers are managed.
        :param client: Docker client; created from the environment when omitted.
        :param stop_timeout: Seconds Docker waits before killing a stopping container.
        :param pull_attempts: Attempts per image pull before giving up.
        """
        self.project = project
        self._client = client
        self.stop_timeout = stop_timeout
        self.pull_attempts = max(1, pull_attempts)

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def container_name(self, service: str) -> str:
        return f"{self.project}-{service}"

    def available(self) -> bool:
        try:
            self.client.ping()
            return True
        except DockerException:
            return False

    def list_running(self) -> List[InstanceState]:
        """
        Returns the running containers labelled with this project.

        :raises ActionError: If the daemon cannot be reached.
        """
        try:
            containers = self.client.containers.list(
                filters={"label": f"{LABEL_PROJECT}={self.project}", "status": "running"}
            )
            # reading container.image can hit the daemon again
            return [self._to_instance(c) for c in containers]
        except DockerException as e:
            raise ActionError(f"cannot list containers: {e}", field="list_running")

    def _to_instance(self, container: Any) -> InstanceState:
        labels = container.labels or {}
        service = labels.get(LABEL_SERVICE) or container.name
        spec = labels.get(LABEL_SPEC)
        if spec:
            try:
                applied = ResolvedDescriptor.model_validate_json(spec)
                return InstanceState(container_id=container.id, **applied.model_dump())
            except ValidationError:
                logger.warning(f"Ignoring unreadable spec label on container {container.name}")
        # Without a readable spec label the instance is diffed on its image alone
        try:
            tags = getattr(container.image, "tags", None) or []
        except NotFound:
            logger.warning(f"Image of container {container.name} is gone")
            tags = []
        return InstanceState(
            name=service,
            image=tags[0] if tags else "",
            container_id=container.id,
        )

    def start(self, descriptor: ResolvedDescriptor) -> EngineResult:
        """
        Creates and starts a container for the descriptor, replacing any
        stopped container left behind under the same name.
        """
        name = self.container_name(descriptor.name)
        try:
            self._remove_if_present(name)
            container = self.client.containers.run(
                descriptor.image,
                name=name,
                detach=True,
                environment=dict(descriptor.environment),
                volumes=self._volumes(descriptor),
                ports=self._ports(descriptor),
                restart_policy=dict(RESTART_POLICIES[descriptor.restart_policy]),
                labels=self._labels(descriptor),
            )
        except DockerException as e:
            logger.error(f"Failed to start {name}: {e}")
            return EngineResult.failed(str(e))
        logger.info(f"Started container {name} from image {descriptor.image}")
        return EngineResult.ok(container.id)

    def stop(self, name: str) -> EngineResult:
        """
        Stops and removes the container for a service. A missing container
        counts as stopped.
        """
        container_name = self.container_name(name)
        try:
            container = self.client.containers.get(container_name)
        except NotFound:
            return EngineResult.ok("not running")
        except DockerException as e:
            return EngineResult.failed(str(e))
        try:
            container.stop(timeout=self.stop_timeout)
            container.remove()
        except NotFound:
            pass
        except DockerException as e:
            logger.error(f"Failed to stop {container_name}: {e}")
            return EngineResult.failed(str(e))
        logger.info(f"Stopped container {container_name}")
        return EngineResult.ok()

    def pull(self, image: str) -> EngineResult:
        """
        Pulls an image, retrying transient failures with exponential backoff.
        """
        repository, tag = parse_repository_tag(image)
        try:
            self._pull_with_retry(repository, tag or "latest")
        except NotFound as e:
            return EngineResult.failed(f"image {image} not found: {e}")
        except DockerException as e:
            return EngineResult.failed(f"pull of {image} failed: {e}")
        logger.info(f"Pulled image {image}")
        return EngineResult.ok()

    def _pull_with_retry(self, repository: str, tag: str) -> None:
        @retry(
            stop=stop_after_attempt(self.pull_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def pull_image():
            self.client.images.pull(repository, tag=tag)

        pull_image()

    def _remove_if_present(self, name: str) -> None:
        try:
            existing = self.client.containers.get(name)
        except NotFound:
            return
        logger.debug(f"Removing leftover container {name}")
        existing.remove(force=True)

    def _labels(self, descriptor: ResolvedDescriptor) -> Dict[str, str]:
        return {
            LABEL_PROJECT: self.project,
            LABEL_SERVICE: descriptor.name,
            LABEL_SPEC: descriptor.model_dump_json(),
        }

    @staticmethod
    def _volumes(descriptor: ResolvedDescriptor) -> List[str]:
        return [
            f"{v.host_path}:{v.container_path}:{'ro' if v.read_only else 'rw'}"
            for v in descriptor.volumes
        ]

    @staticmethod
    def _ports(descriptor: ResolvedDescriptor) -> Dict[str, Any]:
        ports: Dict[str, Any] = {}
        for p in descriptor.ports:
            key = f"{p.container_port}/{p.protocol}"
            binding = (p.host_ip, p.host_port) if p.host_ip else p.host_port
            if key in ports:
                existing = ports[key]
                ports[key] = (existing if isinstance(existing, list) else [existing]) + [binding]
            else:
                ports[key] = binding
        return ports
