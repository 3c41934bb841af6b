"""
Centralized timeout configuration for provider operations.

Deployments talk to a slow, eventually consistent control plane. The values
here bound how long Stacksmith waits on it and how often it asks.

Usage:
    from stacksmith.config import DeploymentConfig
    from stacksmith.timeout_config import Timeouts

    config = DeploymentConfig(poll_interval_seconds=Timeouts.POLL_INTERVAL)

Environment Variables:
    - STACKSMITH_TIMEOUT_POLL_INTERVAL: Seconds between status polls (default: 10s)
    - STACKSMITH_TIMEOUT_DEPLOY: Max total wait for a deployment (default: 1800s)
    - STACKSMITH_TIMEOUT_DESTROY: Max total wait for a stack deletion (default: 1800s)
    - STACKSMITH_TIMEOUT_API_CONNECT: Provider API connect timeout (default: 10s)
    - STACKSMITH_TIMEOUT_API_READ: Provider API read timeout (default: 60s)
"""

import logging
import os
from typing import Final

logger = logging.getLogger(__name__)


def _get_timeout(env_var: str, default: int) -> int:
    """Get timeout value from environment variable or use default.

    Args:
        env_var: Environment variable name
        default: Default timeout in seconds

    Returns:
        Timeout value in seconds
    """
    value = os.environ.get(env_var)
    if value is not None:
        try:
            timeout = int(value)
            if timeout <= 0:
                logger.warning(
                    f"Invalid timeout value for {env_var}: {value}. "
                    f"Must be positive. Using default: {default}s"
                )
                return default
            return timeout
        except ValueError:
            logger.warning(
                f"Invalid timeout value for {env_var}: {value}. "
                f"Must be integer. Using default: {default}s"
            )
            return default
    return default


class Timeouts:
    """Timeout constants for provider operations, in seconds."""

    POLL_INTERVAL: Final[int] = _get_timeout("STACKSMITH_TIMEOUT_POLL_INTERVAL", 10)

    # Long-running stack operations (1800 seconds / 30 minutes)
    DEPLOY: Final[int] = _get_timeout("STACKSMITH_TIMEOUT_DEPLOY", 1800)
    DESTROY: Final[int] = _get_timeout("STACKSMITH_TIMEOUT_DESTROY", 1800)

    # Provider API calls
    API_CONNECT: Final[int] = _get_timeout("STACKSMITH_TIMEOUT_API_CONNECT", 10)
    API_READ: Final[int] = _get_timeout("STACKSMITH_TIMEOUT_API_READ", 60)


def log_timeout_event(
    operation: str,
    timeout_value: float,
    stack_name: str | None = None,
    level: str = "warning",
) -> None:
    """Log a timeout event with consistent formatting.

    Args:
        operation: Name of the operation that timed out
        timeout_value: Timeout value that was exceeded
        stack_name: Optional stack the operation was acting on
        level: Log level (debug, info, warning, error)
    """
    log_func = getattr(logger, level, logger.warning)
    stack_str = f" - stack: '{stack_name}'" if stack_name else ""
    log_func(
        f"Operation '{operation}' timed out after {timeout_value:g} seconds{stack_str}"
    )
