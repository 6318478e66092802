"""
Boundary between the reconciler and the container engine that runs services.
"""
from abc import ABC, abstractmethod
from typing import List, Optional
from pydantic import BaseModel

from ..MODELS.service_descriptor import InstanceState, ResolvedDescriptor


class EngineResult(BaseModel):
    """
    Outcome of a single engine call.
    """
    success: bool
    detail: Optional[str] = None

    @classmethod
    def ok(cls, detail: Optional[str] = None) -> "EngineResult":
        return cls(success=True, detail=detail)

    @classmethod
    def failed(cls, detail: str) -> "EngineResult":
        return cls(success=False, detail=detail)


class ContainerEngine(ABC):
    """
    Operations the reconciler needs from a container engine. The engine is
    the only source of truth for what is currently running.
    """
    @abstractmethod
    def list_running(self) -> List[InstanceState]:
        """Returns the managed instances that are currently running."""

    @abstractmethod
    def start(self, descriptor: ResolvedDescriptor) -> EngineResult:
        """Creates and starts an instance for ``descriptor``."""

    @abstractmethod
    def stop(self, name: str) -> EngineResult:
        """Stops and removes the instance for service ``name``."""

    @abstractmethod
    def pull(self, image: str) -> EngineResult:
        """Fetches the latest copy of ``image``."""
