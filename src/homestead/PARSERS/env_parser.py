"""
Parsers for .env files, supporting quotes and comments.
"""
import io
from typing import Dict

from dotenv import dotenv_values

from ..errors import ConfigError


class EnvParser:
    """
    Parser for .env files. Values are taken literally: placeholders inside a
    .env file are not expanded, since layers are resolved by the
    EnvironmentResolver.
    """
    @staticmethod
    def parse(env_path: str) -> Dict[str, str]:
        """
        Parses an .env file from a path.

        Args:
            env_path (str): Path to the .env file.

        Returns:
            Dict[str, str]: Dictionary of environment variables.
        """
        try:
            with open(env_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ConfigError(f"cannot read env file {env_path}: {e.strerror or e}")
        return EnvParser.parse_from_string(content)

    @staticmethod
    def parse_from_string(content: str) -> Dict[str, str]:
        """
        Parses environment variables from a string.
        Keys declared without a value (``KEY`` on its own line) are skipped.
        """
        values = dotenv_values(stream=io.StringIO(content), interpolate=False)
        return {key: value for key, value in values.items() if value is not None}
