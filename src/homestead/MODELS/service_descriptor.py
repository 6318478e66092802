"""
Models for desired-state service descriptors, before and after resolution.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel, ConfigDict
from enum import Enum


class RestartPolicy(str, Enum):
    """
    Restart policy handed to the container engine.
    """
    NEVER = "never"
    ON_FAILURE = "on-failure"
    UNLESS_STOPPED = "unless-stopped"


class EnvBinding(BaseModel):
    """
    One environment entry. ``value`` may contain placeholders;
    ``None`` passes the key through from the environment layers.
    """
    key: str
    value: Optional[str] = None


class VolumeBinding(BaseModel):
    """
    Maps a host path (relative paths are rooted under the data directory)
    to a path inside the container.
    """
    source: str
    target: str
    read_only: bool = False


class PortBinding(BaseModel):
    """
    Publishes a container port on the host. ``host`` may be a placeholder.
    ``host_ip`` limits the binding to one host address.
    """
    host: str
    container: int
    protocol: str = "tcp"
    host_ip: Optional[str] = None


class ServiceDescriptor(BaseModel):
    """
    Declarative desired state for one service, as written in the catalog.
    """
    name: str
    image: str
    environment: List[EnvBinding] = []
    volumes: List[VolumeBinding] = []
    ports: List[PortBinding] = []
    restart_policy: RestartPolicy = RestartPolicy.UNLESS_STOPPED
    depends_on: List[str] = []


class ResolvedVolume(BaseModel):
    model_config = ConfigDict(frozen=True)

    host_path: str
    container_path: str
    read_only: bool = False


class ResolvedPort(BaseModel):
    model_config = ConfigDict(frozen=True)

    host_port: int
    container_port: int
    protocol: str = "tcp"
    host_ip: Optional[str] = None


class ResolvedDescriptor(BaseModel):
    """
    A descriptor with every placeholder substituted, ready for the engine.
    """
    name: str
    image: str
    environment: Dict[str, str] = {}
    volumes: List[ResolvedVolume] = []
    ports: List[ResolvedPort] = []
    restart_policy: RestartPolicy = RestartPolicy.UNLESS_STOPPED
    depends_on: List[str] = []


class InstanceState(BaseModel):
    """
    A running instance as reported by the container engine.
    The fields mirror ResolvedDescriptor so the two can be diffed.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    image: str
    environment: Dict[str, str] = {}
    volumes: List[ResolvedVolume] = []
    ports: List[ResolvedPort] = []
    restart_policy: RestartPolicy = RestartPolicy.UNLESS_STOPPED
    depends_on: List[str] = []
    container_id: Optional[str] = None
