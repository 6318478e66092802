"""
Resolution of catalog descriptors against environment layers.
"""
import os
from typing import Dict, List

from ..MODELS.service_descriptor import (
    ServiceDescriptor, ResolvedDescriptor, ResolvedVolume, ResolvedPort,
)
from ..MANAGERS.environment_manager import EnvironmentLayers
from ..UTILS.string_interpolation import PlaceholderInterpolator
from ..errors import ResolutionError


class EnvironmentResolver:
    """
    Turns a ServiceDescriptor into a ResolvedDescriptor by substituting every
    placeholder from the environment layers.

    Each placeholder is looked up on its own, so keys a descriptor does not
    reference have no effect on the result.
    """
    def __init__(self, data_dir: str = "."):
        """
        :param data_dir: Root for relative volume sources.
        """
        self.data_dir = os.path.abspath(data_dir)

    def resolve(self, descriptor: ServiceDescriptor, layers: EnvironmentLayers) -> ResolvedDescriptor:
        """
        Resolves one descriptor.

        :param descriptor: The descriptor as loaded from the catalog.
        :param layers: The environment layers for this cycle.
        :return: The resolved descriptor.
        :raises UnresolvedPlaceholderError: If a placeholder without a default is undefined.
        :raises ResolutionError: If a resolved value is invalid for its field.
        """
        name = descriptor.name
        image = self._interpolate(descriptor.image, layers, name, "image").strip()
        if not image:
            raise ResolutionError("image resolved to an empty string", service=name, field="image")

        return ResolvedDescriptor(
            name=name,
            image=image,
            environment=self._resolve_environment(descriptor, layers),
            volumes=self._resolve_volumes(descriptor, layers),
            ports=self._resolve_ports(descriptor, layers),
            restart_policy=descriptor.restart_policy,
            depends_on=list(descriptor.depends_on),
        )

    def _interpolate(self, value: str, layers: EnvironmentLayers, service: str, field: str) -> str:
        return PlaceholderInterpolator.interpolate(value, layers.lookup, service=service, field=field)

    def _resolve_environment(self, descriptor: ServiceDescriptor, layers: EnvironmentLayers) -> Dict[str, str]:
        environment: Dict[str, str] = {}
        for binding in descriptor.environment:
            if binding.value is None:
                # pass-through: omitted when no layer defines it
                value = layers.lookup(binding.key)
                if value is not None:
                    environment[binding.key] = value
                continue
            environment[binding.key] = self._interpolate(
                binding.value, layers, descriptor.name, f"environment.{binding.key}"
            )
        return environment

    def _resolve_volumes(self, descriptor: ServiceDescriptor, layers: EnvironmentLayers) -> List[ResolvedVolume]:
        volumes = []
        for binding in descriptor.volumes:
            source = self._interpolate(binding.source, layers, descriptor.name, "volumes")
            target = self._interpolate(binding.target, layers, descriptor.name, "volumes")
            volumes.append(ResolvedVolume(
                host_path=self.host_path(source, descriptor.name),
                container_path=target,
                read_only=binding.read_only,
            ))
        return volumes

    def host_path(self, source: str, service: str = None) -> str:
        """
        Roots a relative volume source under the data directory.
        Absolute sources are kept as they are.

        :raises ResolutionError: If a relative source escapes the data directory.
        """
        if not source:
            raise ResolutionError("volume source resolved to an empty string", service=service, field="volumes")
        if os.path.isabs(source):
            return os.path.normpath(source)
        path = os.path.normpath(os.path.join(self.data_dir, source))
        if os.path.commonpath([path, self.data_dir]) != self.data_dir:
            raise ResolutionError(f"volume source '{source}' escapes the data directory",
                                  service=service, field="volumes")
        return path

    def _resolve_ports(self, descriptor: ServiceDescriptor, layers: EnvironmentLayers) -> List[ResolvedPort]:
        ports = []
        for binding in descriptor.ports:
            raw = self._interpolate(binding.host, layers, descriptor.name, "ports").strip()
            try:
                host_port = int(raw)
            except ValueError:
                raise ResolutionError(f"host port '{raw}' is not a number", service=descriptor.name, field="ports")
            if not 1 <= host_port <= 65535:
                raise ResolutionError(f"host port {host_port} out of range", service=descriptor.name, field="ports")
            ports.append(ResolvedPort(
                host_port=host_port,
                container_port=binding.container,
                protocol=binding.protocol,
                host_ip=binding.host_ip,
            ))
        return ports
