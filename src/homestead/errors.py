"""
Exception hierarchy shared by the catalog loader, resolver and reconciler.
"""
from typing import Optional


class HomesteadError(Exception):
    """
    Base class for all errors raised by homestead.

    :param message: Human readable description.
    :param service: Name of the offending service, if any.
    :param field: Name of the offending descriptor field, if any.
    """
    def __init__(self, message: str, service: Optional[str] = None, field: Optional[str] = None):
        self.message = message
        self.service = service
        self.field = field
        super().__init__(self._format())

    def _format(self) -> str:
        location = ".".join(part for part in (self.service, self.field) if part)
        if location:
            return f"{location}: {self.message}"
        return self.message


class ConfigError(HomesteadError):
    """Invalid catalog: duplicate name, dependency cycle, unknown dependency or malformed descriptor."""


ParseError = ConfigError


class ResolutionError(HomesteadError):
    """A descriptor could not be resolved against the environment layers."""


class UnresolvedPlaceholderError(ResolutionError):
    """
    A placeholder without a default is not defined in any layer.
    """
    def __init__(self, key: str, service: Optional[str] = None, field: Optional[str] = None):
        self.key = key
        super().__init__(f"variable '{key}' is not set and has no default", service=service, field=field)


class ActionError(HomesteadError):
    """An engine call failed or timed out."""


class CycleInProgressError(HomesteadError):
    """A reconciliation cycle was requested while another one is running."""
