"""
In-process Transport

Stands in for the network and the per-member transport driver. Every
endpoint string is bound to a handler object in a registry shared by all
drivers of one runtime; "sending" to an endpoint is a method call on whatever
handler is bound there, exactly like the direct RPC handlers between nodes of
a single-process Raft cluster. A driver also owns the counters its member
publishes and a directory on disk.
"""

import logging
import os
import shutil
import threading
from typing import Any, Callable, Dict, List, Optional

from ..config import DriverContext
from ..counters import CountersManager


class EndpointRegistry:
    """Endpoint string -> handler, shared between drivers"""

    def __init__(self):
        self._handlers: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def bind(self, endpoint: str, handler: Any) -> None:
        with self._lock:
            existing = self._handlers.get(endpoint)
            if existing is not None and existing is not handler:
                raise ValueError(f"endpoint already bound: {endpoint}")
            self._handlers[endpoint] = handler

    def unbind(self, endpoint: str, handler: Any) -> None:
        with self._lock:
            if self._handlers.get(endpoint) is handler:
                del self._handlers[endpoint]

    def resolve(self, endpoint: str) -> Optional[Any]:
        with self._lock:
            return self._handlers.get(endpoint)

    def endpoints(self) -> List[str]:
        with self._lock:
            return sorted(self._handlers)


class MediaDriver:
    """
    Transport driver of one member or client.

    ``bind``/``resolve`` reach the shared registry; ``bind_local`` and
    ``resolve_local`` cover the IPC scope shared only by processes using the
    same driver directory.
    """

    def __init__(self, context: DriverContext, registry: EndpointRegistry,
                 on_close: Optional[Callable[["MediaDriver"], None]] = None):
        self.context = context
        self.directory = context.directory
        self.registry = registry
        self.counters = CountersManager()
        self._on_close = on_close
        self._bound: List[tuple] = []
        self._local: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._closed = False
        self.logger = logging.getLogger(f"raft_harness.sim.driver.{os.path.basename(self.directory)}")

    def start(self) -> "MediaDriver":
        if self.context.dir_delete_on_start and os.path.isdir(self.directory):
            shutil.rmtree(self.directory)
        os.makedirs(self.directory, exist_ok=True)
        self.logger.debug(f"Driver started in {self.directory}")
        return self

    def bind(self, endpoint: str, handler: Any) -> None:
        self.registry.bind(endpoint, handler)
        with self._lock:
            self._bound.append((endpoint, handler))

    def unbind(self, endpoint: str, handler: Any) -> None:
        self.registry.unbind(endpoint, handler)
        with self._lock:
            if (endpoint, handler) in self._bound:
                self._bound.remove((endpoint, handler))

    def resolve(self, endpoint: str) -> Optional[Any]:
        if self._closed:
            return None
        return self.registry.resolve(endpoint)

    def bind_local(self, name: str, handler: Any) -> None:
        with self._lock:
            self._local[name] = handler

    def unbind_local(self, name: str) -> None:
        with self._lock:
            self._local.pop(name, None)

    def resolve_local(self, name: str) -> Optional[Any]:
        with self._lock:
            return self._local.get(name)

    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        with self._lock:
            bound = list(self._bound)
            self._bound.clear()
            self._local.clear()
        for endpoint, handler in bound:
            self.registry.unbind(endpoint, handler)

        self.counters.close_all()
        if self.context.dir_delete_on_shutdown:
            shutil.rmtree(self.directory, ignore_errors=True)
        if self._on_close is not None:
            self._on_close(self)

        self.logger.debug(f"Driver in {self.directory} closed")
