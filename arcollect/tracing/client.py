"""
Langfuse tracing for the collections API.

Built from the ``langfuse`` config section. Tracing is optional: missing
keys, a host without a scheme, or a failed credential check leave the
client disabled and every call below a no-op. The assistant never fails a
turn because of tracing.
"""

import logging
from typing import Any, Optional

from langfuse import Langfuse

from ..models import LangfuseConfig

logger = logging.getLogger(__name__)


def resolve_host(host: str) -> Optional[str]:
    """Normalize LANGFUSE_HOST; empty means the SDK default (Langfuse cloud)."""
    host = (host or "").strip().rstrip("/")
    if not host:
        return None
    if not host.startswith(("http://", "https://")):
        # The SDK would silently fall back to HTTPS on port 443
        raise ValueError(
            f"LANGFUSE_HOST '{host}' must start with http:// or https://"
        )
    return host


class TracingClient:
    """Owns the Langfuse client for the lifetime of the API process."""

    def __init__(self, config: LangfuseConfig):
        self.config = config
        self._client: Optional[Langfuse] = None
        self._error: Optional[str] = None

        if not config.is_configured:
            self._error = "Langfuse credentials not configured"
            logger.debug(f"Tracing disabled: {self._error}")
            return

        try:
            host = resolve_host(config.host)
        except ValueError as e:
            self._disable(str(e))
            return

        kwargs: dict[str, Any] = {
            "public_key": config.public_key,
            "secret_key": config.secret_key,
            "debug": config.debug,
        }
        if host:
            kwargs["host"] = host

        try:
            client = Langfuse(**kwargs)
            if config.auth_check and not client.auth_check():
                self._disable("Langfuse rejected the configured keys (auth_check failed)")
                return
        except Exception as e:
            self._disable(f"Langfuse unreachable at {host or 'default host'}: {e}")
            return

        self._client = client
        checked = "verified" if config.auth_check else "not verified"
        logger.info(f"Langfuse tracing enabled (host: {host or 'default'}, keys {checked})")

    def _disable(self, reason: str) -> None:
        self._client = None
        self._error = reason
        logger.warning(f"Tracing disabled: {reason}")

    @property
    def enabled(self) -> bool:
        return self._client is not None

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def client(self) -> Optional[Langfuse]:
        return self._client

    def flush(self) -> None:
        """Send buffered events; called at the end of every conversation turn."""
        if self._client is None:
            return
        try:
            self._client.flush()
        except Exception as e:
            logger.warning(f"Failed to flush tracing events: {e}")

    def shutdown(self) -> None:
        if self._client is None:
            return
        try:
            self._client.shutdown()
            logger.info("Langfuse tracing client shutdown complete")
        except Exception as e:
            logger.warning(f"Error during tracing client shutdown: {e}")
        finally:
            self._client = None


_tracing_client: Optional[TracingClient] = None


def init_tracing_client(config: LangfuseConfig) -> TracingClient:
    """Create the process-wide tracing client from the ``langfuse`` config section."""
    global _tracing_client
    if _tracing_client is not None:
        _tracing_client.shutdown()
    _tracing_client = TracingClient(config)
    return _tracing_client


def get_tracing_client() -> Optional[TracingClient]:
    return _tracing_client


def flush_tracing() -> None:
    if _tracing_client is not None:
        _tracing_client.flush()


def shutdown_tracing() -> None:
    global _tracing_client
    if _tracing_client is not None:
        _tracing_client.shutdown()
        _tracing_client = None
