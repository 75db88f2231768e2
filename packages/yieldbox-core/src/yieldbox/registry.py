from __future__ import annotations

import importlib.metadata
from dataclasses import dataclass, field
from typing import Any

from .contracts import ExchangeClient, PublisherPlugin
from .exceptions import PluginLoadError, PluginNotFoundError
from .plugins.builtins import builtins as builtin_plugins

ENTRYPOINT_GROUPS = {
    "exchange": "yieldbox.exchanges",
    "publisher": "yieldbox.publishers",
}


def _load_group(group: str) -> dict[str, Any]:
    eps = importlib.metadata.entry_points(group=group)
    out: dict[str, Any] = {}
    for ep in eps:
        try:
            out[ep.name] = ep.load()
        except Exception as e:
            raise PluginLoadError(ep.name, e) from e
    return out


@dataclass
class PluginRegistry:
    exchanges: dict[str, type[ExchangeClient]] = field(default_factory=dict)
    publishers: dict[str, type[PublisherPlugin]] = field(default_factory=dict)

    @staticmethod
    def discover() -> PluginRegistry:
        builtins = builtin_plugins()
        return PluginRegistry(
            exchanges={**builtins["exchange"], **_load_group(ENTRYPOINT_GROUPS["exchange"])},
            publishers={**builtins["publisher"], **_load_group(ENTRYPOINT_GROUPS["publisher"])},
        )

    def groups(self) -> dict[str, dict[str, Any]]:
        return {"exchange": self.exchanges, "publisher": self.publishers}

    def lookup(self, group: str, name: str) -> Any:
        mapping = self.groups()[group]
        if name not in mapping:
            raise PluginNotFoundError(name, group, list(mapping.keys()))
        return mapping[name]

    def create_exchange(self, name: str, **params_init: Any) -> ExchangeClient:
        return self.lookup("exchange", name)(**params_init)

    def create_publisher(self, name: str, **params_init: Any) -> PublisherPlugin:
        return self.lookup("publisher", name)(**params_init)
