"""
Environment-backed configuration for the Owntracks Lambda functions.

Each handler loads its configuration structure once per execution
environment and passes it explicitly into the components it builds. Nothing
below `app.py` reads the process environment.
"""

import os
from dataclasses import dataclass
from typing import Optional


def get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Gets an environment variable or raises a ValueError for fast-failure.

    Args:
        name: The name of the environment variable.
        default: An optional default value. If not provided, the variable is required.

    Returns:
        The value of the environment variable.

    Raises:
        ValueError: If the required environment variable is not set.
    """
    value = os.environ.get(name, default)
    if value is None:
        raise ValueError(f"FATAL: Environment variable '{name}' is not set.")
    return value


@dataclass(frozen=True)
class ProcessorConfig:
    """
    Configuration for the scheduled queue-draining function.

    An empty `elastic_host` or `elastic_auth` is a valid setting: it
    disables the indexing processor.
    """

    queue_name: str
    bucket: str
    elastic_host: str = ""
    elastic_auth: str = ""
    environment: str = "dev"

    @classmethod
    def from_env(cls) -> "ProcessorConfig":
        return cls(
            queue_name=get_env_var("AWS_QUEUE"),
            bucket=get_env_var("AWS_BUCKET"),
            elastic_host=get_env_var("ELASTIC_MESSAGE_PROCESSOR_HOST", ""),
            elastic_auth=get_env_var("ELASTIC_MESSAGE_PROCESSOR_AUTH", ""),
            environment=get_env_var("ENVIRONMENT", "dev"),
        )


@dataclass(frozen=True)
class ReducerConfig:
    """Configuration for the scheduled archive-consolidation function."""

    bucket: str
    environment: str = "dev"

    @classmethod
    def from_env(cls) -> "ReducerConfig":
        return cls(
            bucket=get_env_var("AWS_BUCKET"),
            environment=get_env_var("ENVIRONMENT", "dev"),
        )


@dataclass(frozen=True)
class IngestConfig:
    """Configuration for the HTTP ingest function."""

    queue_name: str
    basic_auth: str

    @classmethod
    def from_env(cls) -> "IngestConfig":
        return cls(
            queue_name=get_env_var("AWS_QUEUE"),
            basic_auth=get_env_var("BASIC_AUTH"),
        )


LOG_LEVEL = get_env_var("LOG_LEVEL", "INFO").upper()
