"""Static plugin registry."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from dexter.plugins.base import Plugin, PluginCapability

logger = logging.getLogger(__name__)


class PluginRegistry:
    """Fixed set of plugins for the lifetime of the process.

    Lookups are case-insensitive and accept aliases, so a model answering
    "f2" still reaches the rename plugin.
    """

    def __init__(self, plugins: Iterable[Plugin]):
        self._plugins: dict[str, Plugin] = {}
        self._names: dict[str, str] = {}
        for plugin in plugins:
            if plugin.id in self._plugins:
                raise ValueError(f"Duplicate plugin id: {plugin.id}")
            self._plugins[plugin.id] = plugin
            for name in (plugin.id, *plugin.aliases):
                self._names.setdefault(name.lower(), plugin.id)

    def __iter__(self) -> Iterator[Plugin]:
        return iter(self._plugins.values())

    def __len__(self) -> int:
        return len(self._plugins)

    def __contains__(self, plugin_id: object) -> bool:
        return isinstance(plugin_id, str) and self.resolve(plugin_id) is not None

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._plugins)

    def get(self, plugin_id: str) -> Plugin | None:
        return self._plugins.get(plugin_id)

    def resolve(self, name: str) -> Plugin | None:
        """Find a plugin by id or alias."""
        plugin_id = self._names.get(name.strip().lower())
        return self._plugins.get(plugin_id) if plugin_id else None

    def capabilities(self) -> list[PluginCapability]:
        return [plugin.describe() for plugin in self._plugins.values()]


def default_registry() -> PluginRegistry:
    from dexter.plugins.ffmpeg import FFmpegPlugin
    from dexter.plugins.jdupes import JdupesPlugin
    from dexter.plugins.libvips import LibvipsPlugin
    from dexter.plugins.ocrmypdf import OcrmypdfPlugin
    from dexter.plugins.pandoc import PandocPlugin
    from dexter.plugins.qpdf import QpdfPlugin
    from dexter.plugins.remove import RemovePlugin
    from dexter.plugins.rename import RenamePlugin
    from dexter.plugins.whispercpp import WhisperCppPlugin
    from dexter.plugins.ytdlp import YtDlpPlugin

    return PluginRegistry([
        RenamePlugin(),
        FFmpegPlugin(),
        PandocPlugin(),
        QpdfPlugin(),
        OcrmypdfPlugin(),
        YtDlpPlugin(),
        JdupesPlugin(),
        LibvipsPlugin(),
        WhisperCppPlugin(),
        RemovePlugin(),
    ])
