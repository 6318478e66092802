"""
Models for the overall service catalog.
"""
from typing import Dict, List
from pydantic import BaseModel
from .service_descriptor import ServiceDescriptor


class ServiceCatalog(BaseModel):
    """
    Ordered mapping from service name to descriptor.
    Iteration order is the order the services were declared in.
    """
    services: Dict[str, ServiceDescriptor] = {}

    def names(self) -> List[str]:
        return list(self.services.keys())

    def descriptors(self) -> List[ServiceDescriptor]:
        return list(self.services.values())

    def __len__(self) -> int:
        return len(self.services)
