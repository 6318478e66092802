"""
Utilities for placeholder interpolation against environment layers.
"""
import re
from typing import Callable, Mapping, Optional, Set, Union

from ..errors import ResolutionError, UnresolvedPlaceholderError

Lookup = Union[Mapping[str, str], Callable[[str], Optional[str]]]


class PlaceholderInterpolator:
    """
    Substitutes compose-style placeholders in strings.

    Supports ``$VAR``, ``${VAR}``, ``${VAR:-default}``, ``${VAR-default}``,
    ``${VAR:+value}``, ``${VAR+value}`` and ``$$`` for a literal dollar sign.
    The colon forms treat an empty value as unset.
    """
    # Group 1: escaped $
    # Group 2/3/4: braced name, modifier, modifier argument
    # Group 5: bare name
    # Group 6: an opening brace that did not form a valid placeholder
    PATTERN = re.compile(
        r'\$(?:'
        r'(\$)'
        r'|\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-+])([^}]*))?\}'
        r'|([A-Za-z_][A-Za-z0-9_]*)'
        r'|(\{)'
        r')'
    )

    @staticmethod
    def _lookup_fn(lookup: Lookup) -> Callable[[str], Optional[str]]:
        if callable(lookup):
            return lookup
        return lookup.get

    @classmethod
    def interpolate(cls, template: str, lookup: Lookup,
                    service: Optional[str] = None, field: Optional[str] = None) -> str:
        """
        Interpolates placeholders in the template.

        :param template: The string containing placeholders.
        :param lookup: A mapping, or a callable returning the value for a key or None.
        :param service: Service name used in error messages.
        :param field: Descriptor field used in error messages.
        :return: The interpolated string.
        :raises UnresolvedPlaceholderError: If a variable is unset and has no default.
        :raises ResolutionError: If the template contains a malformed placeholder.
        """
        get = cls._lookup_fn(lookup)

        def replace(match):
            if match.group(1):
                return '$'
            if match.group(6):
                raise ResolutionError(f"invalid placeholder syntax in '{template}'", service=service, field=field)

            var_name = match.group(2) or match.group(5)
            modifier = match.group(3)
            alt_value = match.group(4) or ''
            value = get(var_name)

            if modifier == ':-':
                return value if value else alt_value
            if modifier == '-':
                return value if value is not None else alt_value
            if modifier == ':+':
                return alt_value if value else ''
            if modifier == '+':
                return alt_value if value is not None else ''
            if value is None:
                raise UnresolvedPlaceholderError(var_name, service=service, field=field)
            return value

        return cls.PATTERN.sub(replace, template)

    @classmethod
    def referenced_keys(cls, template: str) -> Set[str]:
        """
        Returns the variable names a template refers to.
        """
        keys = set()
        for match in cls.PATTERN.finditer(template):
            name = match.group(2) or match.group(5)
            if name:
                keys.add(name)
        return keys
