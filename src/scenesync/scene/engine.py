"""Traversal of the remote scene graph into a local tree.

One engine covers both strategies. ``eager`` commits every root-owned item
at level 1, then descends each to full depth before reporting it.
``staged`` reports level-1 skeletons first, then expands nodes one level at
a time through the :class:`LoadingScheduler`, visible nodes first.

Identity goes through :class:`SceneStore`: a handle is reserved before its
first fetch and committed after its own metadata arrives but before its
children are walked, so a cycle back to an ancestor finds a committed node
and stops there. ``max_depth`` is only a backstop.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Iterable, Sequence

from scenesync.config.models import EngineSettings
from scenesync.runtime_logging import BoundLogger, RuntimeLogger, get_runtime_logger
from scenesync.scene.cancellation import BuildCancelled, CancellationToken, GenerationCounter, YieldPacer
from scenesync.scene.errors import StructuralError, TransientFetchError
from scenesync.scene.limiter import ConcurrencyLimiter, Settled
from scenesync.scene.model import LoadState, PinLink, SceneNode, icon_for_type
from scenesync.scene.progress import EventHandler, ProgressReporter, Stage
from scenesync.scene.remote import SceneApi
from scenesync.scene.scheduler import FetchKind, LoadingScheduler, LoadItem
from scenesync.scene.store import SceneStore

if TYPE_CHECKING:
    from scenesync.transport import RemoteInvoker

Discovered = tuple[SceneNode, bool]


@dataclass(slots=True)
class _Build:
    token: CancellationToken
    reporter: ProgressReporter
    store: SceneStore
    pacer: YieldPacer
    started: float
    log: BoundLogger


class TraversalEngine:
    def __init__(
        self,
        invoker: RemoteInvoker,
        settings: EngineSettings | None = None,
        on_event: EventHandler | None = None,
        logger: RuntimeLogger | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.api = SceneApi(invoker, max_in_flight=self.settings.concurrency_limit)
        self.on_event = on_event
        self.logger = logger or get_runtime_logger()
        self.store = SceneStore()
        self.scheduler = LoadingScheduler(logger=self.logger)
        self.generations = GenerationCounter()
        self.limiter = ConcurrencyLimiter(self.settings.concurrency_limit)
        self._build: _Build | None = None
        self._visible: set[int] = set()
        self._auto_resume = False
        self._wakeup = asyncio.Event()

    @property
    def tree(self) -> list[SceneNode]:
        return self.store.tree

    @property
    def phase(self) -> str:
        if self._build is None:
            return Stage.IDLE.value
        return self._build.reporter.stage_name.value

    # -- public operations -------------------------------------------------

    async def build(self, visible: Sequence[int] | None = None) -> list[SceneNode]:
        """Mirror the whole scene into a fresh store and return the forest.

        Starting a build supersedes any build still in flight. Raises
        :class:`StructuralError` when the root cannot be resolved and
        :class:`BuildCancelled` when this build is itself superseded.
        """

        ctx = await self._begin(fresh_store=True)
        strategy = self.settings.strategy
        ctx.log.info("engine.build.start", strategy=strategy)
        try:
            await ctx.reporter.stage(Stage.ROOT, 0.0, "Resolving root graph")
            root = await self._resolve_root(ctx)
            await ctx.reporter.stage(Stage.ROOT, 1.0, "Root graph resolved")
            if strategy == "eager":
                await self._build_eager(ctx, root)
            else:
                await self._build_staged(ctx, root, visible)
            ctx.token.check()
        except BuildCancelled:
            ctx.log.info("engine.build.cancelled")
            await ctx.reporter.cancelled()
            raise
        except StructuralError as exc:
            ctx.log.error("engine.root.failed", error=str(exc))
            ctx.reporter.closed = True
            raise
        except asyncio.CancelledError:
            if ctx.token.is_current:
                self.generations.invalidate()
            await ctx.reporter.cancelled()
            raise

        elapsed_ms = (time.perf_counter() - ctx.started) * 1000
        await ctx.reporter.complete(len(ctx.store), elapsed_ms)
        ctx.log.info(
            "engine.build.complete",
            node_count=len(ctx.store),
            roots=len(ctx.store.tree),
            elapsed_ms=round(elapsed_ms, 1),
        )
        return list(ctx.store.tree)

    async def cancel(self) -> None:
        ctx = self._build
        self.generations.invalidate()
        self.scheduler.clear()
        self._auto_resume = False
        self._wakeup.set()
        if ctx is not None:
            await ctx.reporter.cancelled()

    def promote(self, handle: int) -> bool:
        """Move a discovered node to the front of the staged work queue."""

        if handle not in self.store:
            return False
        promoted = self.scheduler.prioritize([handle], FetchKind.CHILDREN) > 0
        if promoted:
            self.logger.debug("engine.promoted", handle=handle)
            self._wakeup.set()
        return promoted

    def set_visible(self, handles: Iterable[int]) -> int:
        """Prioritise nodes that just scrolled into view.

        With ``pause_on_scroll`` background draining stops until the newly
        prioritised work has drained, then resumes on its own.
        """

        visible = set(handles)
        fresh = [
            handle
            for handle in visible
            if handle not in self._visible and handle in self.store and not self.scheduler.is_loaded(handle)
        ]
        self._visible = visible
        added = self.scheduler.prioritize(fresh, FetchKind.CHILDREN) if fresh else 0
        if added and self.settings.pause_on_scroll:
            self.scheduler.pause()
            self._auto_resume = True
        if added:
            self._wakeup.set()
        return added

    async def load_attributes(self, handle: int) -> dict | None:
        node = self.store.get(handle)
        if node is None:
            return None
        if node.attributes is not None:
            return node.attributes
        token = CancellationToken(self.generations, self.generations.current)
        reporter = ProgressReporter(token, self.on_event, self.logger)
        try:
            attributes = await self.api.attr_info(handle)
        except Exception as exc:
            self.logger.warning("engine.attributes.failed", handle=handle, error=str(exc))
            return None
        if attributes is not None:
            node.attributes = attributes
            await reporter.node_updated(node)
        return attributes

    async def add_node(self, handle: int) -> SceneNode | None:
        """Mirror one newly created top-level item and its subtree.

        Runs as its own generation against the existing store, so it
        supersedes a build still in flight.
        """

        ctx = await self._begin(fresh_store=False)
        ctx.log.info("engine.add_node.start", handle=handle)
        node = None
        try:
            result = await self._materialize(ctx, handle, 1)
            if result is not None:
                node, is_new = result
                if is_new:
                    await self._descend(ctx, node)
                # A node already mirrored through a pin still becomes top-level.
                if not any(existing is node for existing in ctx.store.tree):
                    ctx.store.add_root(node)
                    await ctx.reporter.node_added(node)
        except BuildCancelled:
            await ctx.reporter.cancelled()
            raise
        await ctx.reporter.complete(len(ctx.store), (time.perf_counter() - ctx.started) * 1000)
        return node

    def remove(self, handle: int) -> list[int]:
        removed = self.store.delete(handle)
        self._visible.difference_update(removed)
        if removed:
            self.logger.info("engine.removed", handle=handle, cascade=len(removed) - 1)
        return removed

    # -- build plumbing ----------------------------------------------------

    async def _begin(self, *, fresh_store: bool) -> _Build:
        previous = self._build
        token = self.generations.next_token()
        self.scheduler.clear()
        self._visible = set()
        self._auto_resume = False
        if fresh_store:
            self.store = SceneStore()
        log = self.logger.bind(generation=token.generation)
        ctx = _Build(
            token=token,
            reporter=ProgressReporter(token, self.on_event, log),
            store=self.store,
            pacer=YieldPacer(self.settings.yield_every),
            started=time.perf_counter(),
            log=log,
        )
        self._build = ctx
        if previous is not None:
            await previous.reporter.cancelled()
        return ctx

    async def _resolve_root(self, ctx: _Build) -> int:
        try:
            handle = await self.api.root_graph()
            ctx.token.check()
            is_graph = await self.api.is_graph(handle)
        except (BuildCancelled, StructuralError):
            raise
        except Exception as exc:
            raise StructuralError(f"could not resolve root graph: {exc}") from exc
        ctx.token.check()
        if not is_graph:
            raise StructuralError(f"root item {handle} is not a graph")
        return handle

    async def _root_items(self, ctx: _Build, root: int) -> list[int]:
        try:
            handles = await self.api.owned_items(root)
        except Exception as exc:
            raise StructuralError(f"could not list items of root graph {root}: {exc}") from exc
        ctx.token.check()
        return handles

    @staticmethod
    def _raise_cancelled(outcomes: Sequence[Settled]) -> None:
        for outcome in outcomes:
            if isinstance(outcome.error, BuildCancelled):
                raise outcome.error

    @staticmethod
    def _fetch_failed(
        ctx: _Build, handle: int | None, exc: BaseException, **fields: object
    ) -> TransientFetchError:
        error = exc if isinstance(exc, TransientFetchError) else TransientFetchError(handle, exc)
        ctx.log.warning(
            "engine.fetch.failed",
            handle=handle,
            error=str(error),
            error_type=type(error).__name__,
            cause=type(error.cause).__name__,
            **fields,
        )
        return error

    def _mark_failed(self, ctx: _Build, node: SceneNode, exc: BaseException) -> None:
        error = self._fetch_failed(ctx, node.handle, exc, name=node.name)
        node.load_state = LoadState.ERROR
        node.error = str(error)

    # -- identity ----------------------------------------------------------

    async def _materialize(
        self,
        ctx: _Build,
        handle: int,
        level: int,
        pin: PinLink | None = None,
        *,
        skeleton: bool = False,
    ) -> Discovered | None:
        """Return the canonical node for ``handle`` and whether it is new.

        ``None`` means the fetch failed and the branch is omitted.
        """

        reservation = ctx.store.reserve_or_reuse(handle)
        if not reservation.is_new:
            node = reservation.node
            if node is None:
                node = await ctx.store.wait_for(handle)
                ctx.token.check()
                if node is None:
                    return None
            if pin is not None:
                node.pin = pin
            return node, False

        try:
            node = await self._fetch_item(ctx, handle, level, pin, skeleton=skeleton)
            ctx.token.check()
        except BuildCancelled:
            ctx.store.release(handle)
            raise
        except Exception as exc:
            ctx.store.release(handle)
            self._fetch_failed(ctx, handle, exc, level=level)
            return None
        except BaseException:
            ctx.store.release(handle)
            raise
        return ctx.store.commit(handle, node), True

    async def _fetch_item(
        self,
        ctx: _Build,
        handle: int,
        level: int,
        pin: PinLink | None,
        *,
        skeleton: bool,
    ) -> SceneNode:
        name = pin.label if pin is not None else await self.api.name(handle)
        ctx.token.check()
        node = SceneNode(handle=handle, name=name, level=level, pin=pin, icon=icon_for_type(None, name))
        if not skeleton:
            await self._load_details(ctx, node)
        return node

    async def _load_details(self, ctx: _Build, node: SceneNode) -> None:
        handle = node.handle
        assert handle is not None
        type_tag, is_graph = await self.limiter.map(
            [partial(self.api.out_type, handle), partial(self.api.is_graph, handle)]
        )
        ctx.token.check()
        if node.level == 1:
            try:
                node.position = await self.api.position(handle)
            except Exception as exc:
                ctx.log.debug("engine.position.failed", handle=handle, error=str(exc))
        if is_graph:
            node.graph_info = await self.api.graph_info(handle)
        else:
            node.node_info = await self.api.node_info(handle)
        ctx.token.check()
        node.type = type_tag
        node.is_graph = is_graph
        node.icon = icon_for_type(type_tag, node.name)
        node.details_loaded = True
        if node.load_state is LoadState.SKELETON:
            node.load_state = LoadState.LOADING

    # -- children ----------------------------------------------------------

    async def _load_children(self, ctx: _Build, node: SceneNode) -> list[Discovered]:
        handle = node.handle
        assert handle is not None
        if node.is_graph:
            owned = await self.api.owned_items(handle)
            ctx.token.check()
            operations = [partial(self._materialize, ctx, item, node.level + 1) for item in owned]
        else:
            count = await self.api.pin_count(handle)
            ctx.token.check()
            operations = [partial(self._pin_child, ctx, node, index) for index in range(count)]

        outcomes = await self.limiter.map_settled(operations)
        self._raise_cancelled(outcomes)
        ctx.token.check()

        discovered: list[Discovered] = []
        for index, outcome in enumerate(outcomes):
            if not outcome.ok:
                self._fetch_failed(ctx, handle, outcome.error, index=index)
                continue
            if outcome.value is not None:
                discovered.append(outcome.value)
        node.children = [child for child, _ in discovered]
        node.children_loaded = True
        return discovered

    async def _pin_child(self, ctx: _Build, parent: SceneNode, index: int) -> Discovered | None:
        assert parent.handle is not None
        target = await self.api.connected_item(parent.handle, index)
        ctx.token.check()
        info = await self.api.pin_info(parent.handle, index)
        ctx.token.check()
        if info is None:
            return None
        label = str(info.get("staticLabel") or f"pin {index}")
        pin_type = info.get("outType")
        pin = PinLink(
            parent=parent.handle,
            index=index,
            label=label,
            pin_type=None if pin_type is None else str(pin_type),
            raw=info,
        )
        if target is None:
            placeholder = SceneNode(
                handle=None,
                name=label,
                type=pin.pin_type or "",
                level=parent.level + 1,
                pin=pin,
                load_state=LoadState.LOADED,
                details_loaded=True,
                children_loaded=True,
                icon=icon_for_type(pin.pin_type, label),
            )
            return placeholder, False
        return await self._materialize(ctx, target, parent.level + 1, pin)

    async def _fetch_attributes(self, ctx: _Build, node: SceneNode) -> None:
        if node.handle is None or node.attributes is not None:
            return
        try:
            attributes = await self.api.attr_info(node.handle)
        except Exception as exc:
            # Many node types have no value attribute.
            ctx.log.debug("engine.attributes.missing", handle=node.handle, error=str(exc))
            return
        ctx.token.check()
        if attributes is not None:
            node.attributes = attributes
            await ctx.reporter.node_updated(node)

    # -- eager -------------------------------------------------------------

    async def _build_eager(self, ctx: _Build, root: int) -> None:
        await ctx.reporter.stage(Stage.TREE, 0.0, "Loading scene tree")
        handles = await self._root_items(ctx, root)
        # Every owned item is committed at level 1 before any subtree is walked,
        # so a pin elsewhere in the scene cannot claim it at a deeper level.
        outcomes = await self.limiter.map_settled(
            [partial(self._materialize, ctx, handle, 1) for handle in handles]
        )
        self._raise_cancelled(outcomes)
        ctx.token.check()

        top: list[SceneNode] = []
        for handle, outcome in zip(handles, outcomes):
            if not outcome.ok:
                self._fetch_failed(ctx, handle, outcome.error, level=1)
            elif outcome.value is not None and outcome.value[1]:
                top.append(outcome.value[0])

        total = len(top)
        finished: dict[int, SceneNode] = {}
        cursor = 0
        done = 0

        async def subtree(index: int, node: SceneNode) -> None:
            nonlocal cursor, done
            try:
                await self._descend(ctx, node)
            except BuildCancelled:
                raise
            except Exception as exc:
                self._mark_failed(ctx, node, exc)
            finished[index] = node
            done += 1
            # Release level-1 nodes in source order as their subtrees finish.
            while cursor in finished:
                ready = finished.pop(cursor)
                cursor += 1
                ctx.store.add_root(ready)
                await ctx.reporter.node_added(ready)
            await ctx.reporter.stage(Stage.TREE, done / total, f"Loaded {done}/{total} top-level items")

        outcomes = await self.limiter.map_settled(
            [partial(subtree, index, node) for index, node in enumerate(top)]
        )
        self._raise_cancelled(outcomes)

    async def _descend(self, ctx: _Build, node: SceneNode) -> None:
        if node.level >= self.settings.max_depth:
            ctx.log.debug("engine.depth.limit", handle=node.handle, level=node.level)
            node.load_state = LoadState.LOADED
            return
        try:
            discovered = await self._load_children(ctx, node)
        except BuildCancelled:
            raise
        except Exception as exc:
            self._mark_failed(ctx, node, exc)
            return

        fresh = [child for child, is_new in discovered if is_new]
        outcomes = await self.limiter.map_settled([partial(self._descend, ctx, child) for child in fresh])
        self._raise_cancelled(outcomes)

        node.load_state = LoadState.LOADED
        if node.children:
            await ctx.reporter.children_loaded(node, node.children)
        elif not self.settings.lazy_attributes:
            await self._fetch_attributes(ctx, node)
        await ctx.pacer.tick(ctx.token)

    # -- staged ------------------------------------------------------------

    async def _build_staged(self, ctx: _Build, root: int, visible: Sequence[int] | None) -> None:
        await ctx.reporter.stage(Stage.SKELETON, 0.0, "Loading top-level items")
        handles = await self._root_items(ctx, root)
        outcomes = await self.limiter.map_settled(
            [partial(self._materialize, ctx, handle, 1, skeleton=True) for handle in handles]
        )
        self._raise_cancelled(outcomes)
        ctx.token.check()

        level_one: list[SceneNode] = []
        for outcome in outcomes:
            if outcome.ok and outcome.value is not None and outcome.value[1]:
                level_one.append(outcome.value[0])
        for node in level_one:
            ctx.store.add_root(node)
            await ctx.reporter.node_added(node)
        await ctx.reporter.stage(Stage.SKELETON, 1.0, f"Found {len(level_one)} top-level items")

        batch_size = self.settings.visible_batch_size
        self.scheduler.enqueue([node.handle for node in level_one if node.handle is not None])
        first = list(visible) if visible is not None else [node.handle for node in level_one[:batch_size]]
        self.scheduler.prioritize([handle for handle in first if handle is not None])
        await self._drain(ctx)

    async def _drain(self, ctx: _Build) -> None:
        processed = 0
        while True:
            ctx.token.check()
            if self._auto_resume and not self.scheduler.has_priority_work:
                self._auto_resume = False
                self.scheduler.resume()

            batch: list[LoadItem] = []
            while len(batch) < self.settings.concurrency_limit:
                item = self.scheduler.next()
                if item is None:
                    break
                batch.append(item)

            if not batch:
                if self.scheduler.is_paused and self.scheduler.has_pending:
                    await self._wait_for_work()
                    continue
                return

            outcomes = await self.limiter.map_settled([partial(self._expand, ctx, item) for item in batch])
            self._raise_cancelled(outcomes)
            ctx.token.check()
            for item, outcome in zip(batch, outcomes):
                if outcome.ok and outcome.value:
                    self.scheduler.mark_loaded(item.handle)
                else:
                    self.scheduler.mark_failed(item.handle)

            processed += len(batch)
            pending = len(self.scheduler.pending_handles())
            await ctx.reporter.stage(
                Stage.CHILDREN,
                processed / (processed + pending),
                f"Expanded {processed} nodes, {pending} queued",
            )
            await ctx.pacer.tick(ctx.token)

    async def _wait_for_work(self) -> None:
        self._wakeup.clear()
        resumed = asyncio.ensure_future(self.scheduler.wait_for_resume())
        woken = asyncio.ensure_future(self._wakeup.wait())
        try:
            await asyncio.wait({resumed, woken}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            resumed.cancel()
            woken.cancel()

    async def _expand(self, ctx: _Build, item: LoadItem) -> bool:
        node = ctx.store.get(item.handle)
        if node is None:
            return False
        try:
            if not node.details_loaded:
                await self._load_details(ctx, node)
                await ctx.reporter.node_updated(node)
            if item.kind is FetchKind.DETAILS:
                return True
            if item.kind is FetchKind.ATTRIBUTES:
                await self._fetch_attributes(ctx, node)
                return True
            node.load_state = LoadState.LOADING
            if node.level >= self.settings.max_depth:
                ctx.log.debug("engine.depth.limit", handle=node.handle, level=node.level)
                node.load_state = LoadState.LOADED
                return True
            discovered = await self._load_children(ctx, node)
        except BuildCancelled:
            raise
        except Exception as exc:
            self._mark_failed(ctx, node, exc)
            return False

        ctx.token.check()
        fresh = [child.handle for child, is_new in discovered if is_new and child.handle is not None]
        self.scheduler.enqueue(fresh)
        node.load_state = LoadState.LOADED
        if node.children:
            await ctx.reporter.children_loaded(node, node.children)
        elif not self.settings.lazy_attributes:
            await self._fetch_attributes(ctx, node)
        return True
