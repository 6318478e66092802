"""
Layered environments: machine-specific overrides stacked over defaults.
"""
import os
from typing import Dict, Iterable, List, Mapping, Optional
from ..PARSERS.env_parser import EnvParser
from ..UTILS.logger import get_logger

logger = get_logger(__name__)


class EnvironmentLayers:
    """
    Ordered stack of key/value layers, least specific first.
    A key resolves to the value from the most specific layer that defines it.
    """
    def __init__(self, layers: Optional[Iterable[Mapping[str, str]]] = None):
        self._layers: List[Dict[str, str]] = [dict(layer) for layer in (layers or [])]

    def __len__(self) -> int:
        return len(self._layers)

    @property
    def layers(self) -> List[Dict[str, str]]:
        return [dict(layer) for layer in self._layers]

    def push(self, layer: Mapping[str, str]) -> None:
        """Adds a layer on top, overriding everything below it."""
        self._layers.append(dict(layer))

    def lookup(self, key: str) -> Optional[str]:
        """
        Returns the value of ``key`` from the most specific layer that
        defines it, or None.
        """
        for layer in reversed(self._layers):
            if key in layer:
                return layer[key]
        return None

    def __contains__(self, key: str) -> bool:
        return any(key in layer for layer in self._layers)

    def flattened(self) -> Dict[str, str]:
        merged: Dict[str, str] = {}
        for layer in self._layers:
            merged.update(layer)
        return merged


class EnvironmentManager:
    """
    Builds EnvironmentLayers from .env files and, optionally, the process
    environment.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        """
        self.base_dir = base_dir
        self.parser = EnvParser()

    def load_layers(self,
                    env_files: List[str],
                    include_process_env: bool = False,
                    required: bool = False) -> EnvironmentLayers:
        """
        Loads one layer per .env file, in order, so later files override
        earlier ones. The process environment, if included, goes on top.

        :param env_files: Paths to .env files, least specific first.
        :param include_process_env: Add ``os.environ`` as the most specific layer.
        :param required: Fail on a missing file instead of skipping it.
        :return: The layer stack.
        """
        layers = EnvironmentLayers()
        for env_file in env_files:
            file_path = os.path.join(self.base_dir, env_file)
            if not os.path.exists(file_path) and not required:
                logger.debug(f"Skipping missing env file {file_path}")
                continue
            layers.push(self.parser.parse(file_path))
            logger.debug(f"Loaded env layer {file_path}")

        if include_process_env:
            layers.push(os.environ.copy())
        return layers
