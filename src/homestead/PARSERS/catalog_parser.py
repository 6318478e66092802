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
Parser for compose-style service catalog files.
"""
import ipaddress
import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional, Union
from pydantic import ValidationError
from ..MODELS.service_catalog import ServiceCatalog
from ..MODELS.service_descriptor import (
    ServiceDescriptor, RestartPolicy, EnvBinding, VolumeBinding, PortBinding,
)
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..UTILS.logger import get_logger
from ..errors import ConfigError

logger = get_logger(__name__)

SERVICE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,62}$")
ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
KNOWN_KEYS = {"image", "environment", "volumes", "ports", "restart", "depends_on"}
RESTART_ALIASES = {"no": RestartPolicy.NEVER}


class DuplicateKeyError(yaml.constructor.ConstructorError):
    def __init__(self, key, mark):
        self.key = key
        super().__init__(None, None, f"found duplicate key '{key}'", mark)


class _UniqueKeyLoader(yaml.SafeLoader):
    """
    SafeLoader that refuses mappings with repeated keys instead of
    silently keeping the last one.
    """
    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen = set()
            for key_node, _ in node.value:
                if key_node.tag == "tag:yaml.org,2002:merge":
                    continue
                key = self.construct_object(key_node, deep=True)
                try:
                    hash(key)
                except TypeError:
                    raise yaml.constructor.ConstructorError(
                        "while constructing a mapping", node.start_mark,
                        "found unhashable key", key_node.start_mark,
                    )
                if key in seen:
                    raise DuplicateKeyError(key, key_node.start_mark)
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def split_outside_placeholders(value: str, sep: str = ":") -> List[str]:
    """
    Splits ``value`` on ``sep`` while leaving ``${...}`` placeholders intact,
    so ``${PORT:-8080}:80`` splits into two parts rather than three.
    """
    parts = []
    current = []
    depth = 0
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "$" and value[i + 1:i + 2] == "{":
            depth += 1
            current.append("${")
            i += 2
            continue
        if ch == "}" and depth:
            depth -= 1
        elif ch == sep and not depth:
            parts.append("".join(current))
            current = []
            i += 1
            continue
        current.append(ch)
        i += 1
    parts.append("".join(current))
    return parts


class CatalogParser:
    """
    Parser for service catalog files.

    Placeholders are kept verbatim; they are resolved per cycle by the
    EnvironmentResolver.
    """
    def __init__(self):
        self.resolver = DependencyResolver()

    def parse(self, catalog_path: Union[str, Path]) -> ServiceCatalog:
        """
        Parses a catalog file from a path.

        :param catalog_path: Path to the catalog file.
        :return: Parsed catalog.
        :raises ConfigError: If the file cannot be read or is invalid.
        """
        try:
            with open(catalog_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ConfigError(f"cannot read catalog {catalog_path}: {e.strerror or e}")
        logger.debug(f"Loaded catalog file {catalog_path}")
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> ServiceCatalog:
        """
        Parses a catalog from a YAML string.

        :param content: YAML content of the catalog.
        :return: Parsed catalog.
        """
        try:
            data = yaml.load(content, Loader=_UniqueKeyLoader)
        except DuplicateKeyError as e:
            raise ConfigError(f"duplicate key '{e.key}' at line {e.problem_mark.line + 1}")
        except (yaml.YAMLError, ValueError) as e:
            # out-of-range typed scalars, e.g. 2024-13-45
            raise ConfigError(f"invalid YAML: {e}")
        return self.parse_data(data)

    def parse_data(self, data: Any) -> ServiceCatalog:
        """
        Builds and validates a catalog from already-loaded data.

        :param data: Mapping with a ``services`` key, or None for an empty catalog.
        :return: Parsed catalog.
        """
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ConfigError("catalog must be a mapping with a 'services' key")

        services_spec = data.get('services') or {}
        if isinstance(services_spec, list):
            services_spec = self._services_from_list(services_spec)
        if not isinstance(services_spec, Mapping):
            raise ConfigError("'services' must be a mapping of name to descriptor")

        services: Dict[str, ServiceDescriptor] = {}
        for name, spec in services_spec.items():
            name = str(name)
            # 1 and '1' are different YAML keys but the same service
            if name in services:
                raise ConfigError("duplicate service name", service=name, field="name")
            services[name] = self._parse_service(name, spec)

        catalog = ServiceCatalog(services=services)
        self.resolver.resolve_order(catalog)
        logger.debug(f"Catalog parsed with {len(catalog)} service(s): {', '.join(catalog.names())}")
        return catalog

    def _services_from_list(self, entries: List[Any]) -> Dict[str, Any]:
        """
        Accepts ``services`` written as a list of descriptors with a ``name`` key.
        """
        services: Dict[str, Any] = {}
        for entry in entries:
            if not isinstance(entry, Mapping) or 'name' not in entry:
                raise ConfigError("list-form services need a 'name' key")
            name = str(entry['name'])
            if name in services:
                raise ConfigError("duplicate service name", service=name, field="name")
            services[name] = {k: v for k, v in entry.items() if k != 'name'}
        return services

    def _parse_service(self, name: str, spec: Any) -> ServiceDescriptor:
        """
        Parses a single service descriptor.

        :param name: The name of the service.
        :param spec: The descriptor mapping.
        :return: A ServiceDescriptor instance.
        """
        if not SERVICE_NAME_RE.match(name):
            raise ConfigError("invalid service name", service=name, field="name")
        if not isinstance(spec, Mapping):
            raise ConfigError("descriptor must be a mapping", service=name)

        for key in spec:
            if key not in KNOWN_KEYS:
                logger.debug(f"Ignoring unsupported key '{key}' in service {name}")

        image = spec.get('image')
        if not isinstance(image, str) or not image.strip():
            raise ConfigError("image is required", service=name, field="image")

        try:
            return ServiceDescriptor(
                name=name,
                image=image.strip(),
                environment=self._parse_environment(name, spec.get('environment')),
                volumes=self._parse_volumes(name, spec.get('volumes')),
                ports=[self._parse_port(name, p) for p in self._to_list(spec.get('ports'))],
                restart_policy=self._parse_restart(name, spec.get('restart')),
                depends_on=self._parse_depends_on(name, spec.get('depends_on')),
            )
        except ValidationError as e:
            raise ConfigError(f"malformed descriptor: {e}", service=name)

    def _parse_environment(self, name: str, env_spec: Any) -> List[EnvBinding]:
        bindings: List[EnvBinding] = []
        if env_spec is None:
            return bindings
        if isinstance(env_spec, Mapping):
            items = [(str(k), v) for k, v in env_spec.items()]
        elif isinstance(env_spec, list):
            items = []
            for entry in env_spec:
                if not isinstance(entry, str):
                    raise ConfigError(f"invalid entry {entry!r}", service=name, field="environment")
                if '=' in entry:
                    key, value = entry.split('=', 1)
                    items.append((key.strip(), value))
                else:
                    items.append((entry.strip(), None))
        else:
            raise ConfigError("must be a list or a mapping", service=name, field="environment")

        seen = set()
        for key, value in items:
            if not ENV_KEY_RE.match(key):
                raise ConfigError(f"invalid variable name '{key}'", service=name, field="environment")
            if key in seen:
                raise ConfigError(f"duplicate variable '{key}'", service=name, field="environment")
            seen.add(key)
            bindings.append(EnvBinding(key=key, value=self._scalar_to_str(value)))
        return bindings

    def _parse_volumes(self, name: str, volumes_spec: Any) -> List[VolumeBinding]:
        volumes = [self._parse_volume(name, v) for v in self._to_list(volumes_spec)]
        targets = set()
        for volume in volumes:
            target = volume.target.rstrip('/') or '/'
            if target in targets:
                raise ConfigError(f"duplicate mount target '{volume.target}'", service=name, field="volumes")
            targets.add(target)
        return volumes

    def _parse_volume(self, name: str, v: Any) -> VolumeBinding:
        if isinstance(v, Mapping):
            if 'source' not in v or 'target' not in v:
                raise ConfigError("volume mapping needs 'source' and 'target'", service=name, field="volumes")
            return VolumeBinding(
                source=str(v['source']),
                target=str(v['target']),
                read_only=bool(v.get('read_only', False)),
            )
        if not isinstance(v, str):
            raise ConfigError(f"invalid volume {v!r}", service=name, field="volumes")

        parts = split_outside_placeholders(v)
        if len(parts) == 2:
            source, target, mode = parts[0], parts[1], 'rw'
        elif len(parts) == 3:
            source, target, mode = parts
        else:
            raise ConfigError(f"invalid volume '{v}', expected source:target[:ro]", service=name, field="volumes")
        if mode not in ('ro', 'rw') or not source or not target.startswith('/'):
            raise ConfigError(f"invalid volume '{v}'", service=name, field="volumes")
        return VolumeBinding(source=source, target=target, read_only=(mode == 'ro'))

    def _parse_port(self, name: str, p: Any) -> PortBinding:
        if isinstance(p, bool):
            raise ConfigError(f"invalid port {p!r}", service=name, field="ports")
        if isinstance(p, int):
            return PortBinding(host=str(p), container=p)
        if isinstance(p, Mapping):
            if 'target' not in p:
                raise ConfigError("port mapping needs 'target'", service=name, field="ports")
            target = self._container_port(name, p['target'])
            published = p.get('published', target)
            return PortBinding(
                host=str(published),
                container=target,
                protocol=str(p.get('protocol', 'tcp')),
                host_ip=self._host_ip(name, p.get('host_ip')),
            )
        if not isinstance(p, str):
            raise ConfigError(f"invalid port {p!r}", service=name, field="ports")

        spec, _, protocol = p.partition('/')
        protocol = protocol or 'tcp'
        if protocol not in ('tcp', 'udp'):
            raise ConfigError(f"invalid protocol in port '{p}'", service=name, field="ports")
        parts = split_outside_placeholders(spec)
        host_ip = None
        if len(parts) == 1:
            host, container = parts[0], parts[0]
        elif len(parts) == 2:
            host, container = parts
        elif len(parts) == 3:
            host_ip, host, container = parts
        else:
            raise ConfigError(
                f"invalid port '{p}', expected [host_ip:]host:container", service=name, field="ports"
            )
        if not host:
            raise ConfigError(f"invalid port '{p}'", service=name, field="ports")
        return PortBinding(
            host=host,
            container=self._container_port(name, container),
            protocol=protocol,
            host_ip=self._host_ip(name, host_ip),
        )

    def _host_ip(self, name: str, value: Any) -> Optional[str]:
        if value is None:
            return None
        try:
            return str(ipaddress.IPv4Address(str(value)))
        except ValueError:
            raise ConfigError(f"invalid host address {value!r}", service=name, field="ports")

    def _container_port(self, name: str, value: Any) -> int:
        try:
            port = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"invalid container port {value!r}", service=name, field="ports")
        if not 1 <= port <= 65535:
            raise ConfigError(f"container port {port} out of range", service=name, field="ports")
        return port

    def _parse_restart(self, name: str, restart: Any) -> RestartPolicy:
        if restart is None:
            return RestartPolicy.UNLESS_STOPPED
        # YAML reads a bare `no` as False
        if restart is False:
            return RestartPolicy.NEVER
        value = str(restart)
        if value in RESTART_ALIASES:
            return RESTART_ALIASES[value]
        try:
            return RestartPolicy(value)
        except ValueError:
            allowed = ", ".join(p.value for p in RestartPolicy)
            raise ConfigError(f"unknown restart policy '{value}' (expected one of {allowed})",
                              service=name, field="restart")

    def _parse_depends_on(self, name: str, deps: Any) -> List[str]:
        if deps is None:
            return []
        if isinstance(deps, Mapping):
            names = [str(d) for d in deps.keys()]
        elif isinstance(deps, list):
            names = [str(d) for d in deps]
        elif isinstance(deps, str):
            names = [deps]
        else:
            raise ConfigError("must be a list or a mapping", service=name, field="depends_on")
        if len(set(names)) != len(names):
            raise ConfigError("duplicate dependency", service=name, field="depends_on")
        return names

    def _scalar_to_str(self, value: Any):
        if value is None:
            return None
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def _to_list(self, val: Any) -> List[Any]:
        """
        Helper to ensure a value is a list.

        :param val: The value to convert.
        :return: A list.
        """
        if val is None:
            return []
        if isinstance(val, (str, int, Mapping)):
            return [val]
        return list(val)


def load(source: Union[str, Path, Mapping[str, Any]]) -> ServiceCatalog:
    """
    Loads a catalog from a path, a YAML string or an already-parsed mapping.

    :raises ConfigError: If the catalog is invalid.
    """
    parser = CatalogParser()
    if isinstance(source, Mapping):
        return parser.parse_data(source)
    if isinstance(source, Path) or ('\n' not in source and os.path.isfile(source)):
        return parser.parse(source)
    return parser.parse_from_string(source)
