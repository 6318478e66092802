"""
Volume management for services: host directories under the data directory.
"""
import os
from typing import Iterable, List
from ..MODELS.service_descriptor import ResolvedDescriptor
from ..UTILS.logger import get_logger

logger = get_logger(__name__)


class VolumeManager:
    """
    Creates the host side of volume bindings before containers start, so the
    engine does not create them owned by root. Only paths inside the data
    directory are touched; absolute paths elsewhere are used as they are.
    """
    def __init__(self, data_dir: str = "./data"):
        """
        Initializes the volume manager.

        :param data_dir: The root directory for service data.
        """
        self.data_dir = os.path.abspath(data_dir)

    def is_managed(self, host_path: str) -> bool:
        path = os.path.abspath(host_path)
        return os.path.commonpath([path, self.data_dir]) == self.data_dir

    def prepare_volumes(self, descriptors: Iterable[ResolvedDescriptor]) -> List[str]:
        """
        Creates missing host directories for the descriptors' volumes.

        :param descriptors: Resolved descriptors for this cycle.
        :return: The directories that were created.
        """
        created = []
        for descriptor in descriptors:
            for volume in descriptor.volumes:
                if not self.is_managed(volume.host_path) or os.path.exists(volume.host_path):
                    continue
                os.makedirs(volume.host_path, exist_ok=True)
                logger.info(f"Created data directory {volume.host_path} for {descriptor.name}")
                created.append(volume.host_path)
        return created
