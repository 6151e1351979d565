"""
Platform Capabilities.

The auth coordinator never branches on the runtime environment itself;
it asks an injected :class:`PlatformCapabilities` provider instead.

- :class:`DesktopPlatform`: native runtime with local persistence.
- :class:`WebPlatform`: browser-style runtime, no local persistence and
  no device identifier.
"""

from __future__ import annotations

import getpass
import hashlib
import os
import socket
import subprocess
import sys
from typing import Optional, Protocol
from urllib.parse import urlparse

from stubly.logger import StructuredLogger

__all__ = ["DesktopPlatform", "PlatformCapabilities", "WebPlatform"]


class PlatformCapabilities(Protocol):
    def is_native(self) -> bool:
        """True when local persistence (credential store) is available."""
        ...

    def get_device_id(self) -> Optional[str]: ...

    def is_network_available(self) -> bool: ...

    def oauth_redirect_url(self) -> str: ...

    def open_url(self, url: str) -> bool: ...


def _probe_host(url: str, timeout_s: float) -> bool:
    parsed = urlparse(url)
    if not parsed.hostname:
        return False
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    try:
        with socket.create_connection((parsed.hostname, port), timeout=timeout_s):
            return True
    except OSError:
        return False


class DesktopPlatform:
    """Native desktop runtime.

    Parameters
    ----------
    logger:
        Structured logger instance.
    remote_url:
        Backend URL probed by :meth:`is_network_available`.  Empty means
        the network is never considered available.
    redirect_url:
        Custom-scheme callback used for OAuth.
    probe_timeout_s:
        Connect timeout of the reachability probe.
    """

    def __init__(
        self,
        logger: StructuredLogger,
        remote_url: str = "",
        redirect_url: str = "com.stubly.app://login-callback",
        probe_timeout_s: float = 2.0,
    ) -> None:
        self._logger = logger
        self._remote_url = remote_url
        self._redirect_url = redirect_url
        self._probe_timeout_s = probe_timeout_s

    def is_native(self) -> bool:
        return True

    def get_device_id(self) -> Optional[str]:
        """Stable per machine and OS account.  Hex SHA-256, first 16 chars."""
        try:
            identity = f"{socket.gethostname()}:{getpass.getuser()}"
        except (OSError, KeyError) as exc:
            self._logger.warning("Could not determine device identity: %s", exc)
            return None
        return hashlib.sha256(identity.encode("utf-8")).hexdigest()[:16]

    def is_network_available(self) -> bool:
        if not self._remote_url:
            return False
        return _probe_host(self._remote_url, self._probe_timeout_s)

    def oauth_redirect_url(self) -> str:
        return self._redirect_url

    def open_url(self, url: str) -> bool:
        """Hand *url* to the OS default handler."""
        try:
            if sys.platform == "win32":
                os.startfile(url)  # type: ignore[attr-defined]
            elif sys.platform == "darwin":
                subprocess.Popen(["open", url])  # noqa: S603
            else:
                subprocess.Popen(["xdg-open", url])  # noqa: S603
            self._logger.info("Opened URL with OS handler.")
            return True
        except (FileNotFoundError, OSError) as exc:
            self._logger.error("Could not open URL with OS handler: %s", exc)
            return False


class WebPlatform:
    """Browser-style runtime: online-only, no device id."""

    def __init__(
        self,
        logger: StructuredLogger,
        remote_url: str = "",
        origin: str = "http://localhost:5173",
        probe_timeout_s: float = 2.0,
    ) -> None:
        self._logger = logger
        self._remote_url = remote_url
        self._origin = origin.rstrip("/")
        self._probe_timeout_s = probe_timeout_s

    def is_native(self) -> bool:
        return False

    def get_device_id(self) -> Optional[str]:
        return None

    def is_network_available(self) -> bool:
        if not self._remote_url:
            return False
        return _probe_host(self._remote_url, self._probe_timeout_s)

    def oauth_redirect_url(self) -> str:
        return self._origin

    def open_url(self, url: str) -> bool:
        # The embedding page performs the navigation.
        self._logger.info("OAuth redirect requested.", extra={"event": "OAUTH_REDIRECT"})
        return False
