# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/harbormaster/provisioner/registry.py
from __future__ import annotations

import importlib
from typing import Callable, Dict, List, Optional, Type

from .base import Provisioner
from ..errors import ConfigurationError
from ..execution.pool import SSHPool
from ..releases.fetcher import ReleaseFetcher

_DRIVER_MODULES = (
    "postgres",
    "zookeeper",
    "kafka",
    "clickhouse",
    "redis",
    "service",
    "quartermaster",
    "privateer",
    "caddy",
)


class ProvisionerRegistry:
    """Maps a service-type name to its driver class."""

    def __init__(self):
        self._classes: Dict[str, Type[Provisioner]] = {}

    def register(self, type_name: str) -> Callable[[Type[Provisioner]], Type[Provisioner]]:
        """Decorator to register a driver class under `type_name`."""
        def _wrap(cls: Type[Provisioner]) -> Type[Provisioner]:
            if type_name in self._classes and self._classes[type_name] is not cls:
                raise ValueError(f"provisioner type {type_name!r} registered twice")
            cls.type_name = type_name
            self._classes[type_name] = cls
            return cls
        return _wrap

    def add(self, type_name: str, cls: Type[Provisioner]) -> None:
        self.register(type_name)(cls)

    def has(self, type_name: str) -> bool:
        return type_name in self._classes

    def get(
        self,
        type_name: str,
        pool: SSHPool,
        fetcher: Optional[ReleaseFetcher] = None,
    ) -> Provisioner:
        cls = self._classes.get(type_name)
        if cls is None:
            raise ConfigurationError(
                f"unknown provisioner type: {type_name} (known: {', '.join(self.types())})"
            )
        return cls(pool, fetcher)

    def types(self) -> List[str]:
        return sorted(self._classes)


_DEFAULT = ProvisionerRegistry()
register = _DEFAULT.register


def default_registry() -> ProvisionerRegistry:
    """The registry holding every built-in driver."""
    for mod in _DRIVER_MODULES:
        importlib.import_module(f"{__package__}.{mod}")
    return _DEFAULT
