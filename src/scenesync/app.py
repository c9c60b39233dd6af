"""scenesync Textual application shell."""

from __future__ import annotations

from pathlib import Path

from textual.app import App, ComposeResult
from textual.widgets import Footer, Header

from scenesync.config.models import AppSettings
from scenesync.config.store import SettingsStore
from scenesync.runtime_logging import configure_runtime_logging
from scenesync.scene.cancellation import BuildCancelled
from scenesync.scene.engine import TraversalEngine
from scenesync.scene.errors import SceneSyncError
from scenesync.transport import HttpInvoker, RemoteInvoker
from scenesync.widgets.outliner import SceneOutlinerPanel


class SceneSyncApp(App[None]):
    TITLE = "scenesync"
    SUB_TITLE = "Live scene outliner"

    BINDINGS = [
        ("r", "rebuild", "Rebuild"),
        ("c", "cancel_build", "Cancel"),
        ("q", "quit", "Quit"),
    ]

    CSS = """
    Screen {
        layout: vertical;
    }
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        settings: AppSettings | None = None,
        invoker: RemoteInvoker | None = None,
        log_level: str | None = None,
        log_file: str | Path | None = None,
    ) -> None:
        self.logger = configure_runtime_logging(level=log_level, log_file=log_file)
        self.settings = settings or SettingsStore().load()
        server_url = (url or self.settings.server.url).rstrip("/")
        self._owns_invoker = invoker is None
        self.invoker = invoker or HttpInvoker(server_url, timeout=self.settings.server.timeout_s)
        self.outliner = SceneOutlinerPanel(title=server_url)
        self.engine = TraversalEngine(
            self.invoker,
            self.settings.engine,
            on_event=self.outliner.handle_event,
            logger=self.logger,
        )
        self.outliner.engine = self.engine
        self.logger.info("app.initialized", url=server_url, strategy=self.settings.engine.strategy)
        super().__init__()

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield self.outliner
        yield Footer()

    def on_mount(self) -> None:
        self.logger.info("app.mounted")
        self.action_rebuild()

    def action_rebuild(self) -> None:
        self.logger.debug("app.action_rebuild")
        self.outliner.reset()
        self.run_worker(self._run_build(), group="scene-build", exclusive=True)

    async def action_cancel_build(self) -> None:
        self.logger.debug("app.action_cancel_build")
        await self.engine.cancel()

    async def _run_build(self) -> None:
        try:
            await self.engine.build()
        except BuildCancelled:
            self.logger.debug("app.build.cancelled")
        except SceneSyncError as exc:
            self.logger.error("app.build.failed", error=str(exc))
            self.notify(f"Scene build failed: {exc}", severity="error")

    async def on_unmount(self) -> None:
        if self._owns_invoker and isinstance(self.invoker, HttpInvoker):
            await self.invoker.aclose()
        self.logger.info("app.exit")
