"""
Merge/precedence resolver for envlens.

`resolve` turns a LoaderState plus configuration into the final mapping of
variables. It walks a small state machine:

    Cached -> SelectFile -> ValidateFile -> LoadAndMerge -> Cache

File, shell and secret manager sources are merged under a fixed policy:
with shell override the shell is the base and the file only fills gaps,
otherwise the file is the base and the shell fills gaps. Secret managers
always merge last, each with its own override flag.

`ResolverService` wraps one LoaderState in a single worker task fed by a
queue, so reload requests from several callers are serialized and
coalesced.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .config import EnvLensConfig
from .discovery import find_env_files
from .loader import EnvFileLoader, InvalidInputError
from .providers import ProviderError, ProviderRegistry
from .providers.built_in import register_built_in_providers
from .records import LoaderState, VariableRecord
from .shell import load_shell_vars

logger = logging.getLogger(__name__)

Discover = Callable[..., Sequence[Path]]


def merge_vars(
    target: dict[str, VariableRecord],
    source: Mapping[str, VariableRecord],
    override: bool,
) -> dict[str, VariableRecord]:
    """
    Merge `source` into `target` in place.

    With `override` every key of `source` replaces the one in `target`;
    without it `source` only fills names `target` does not have yet.

    Returns:
        `target`, for chaining
    """
    for name, record in source.items():
        if override or name not in target:
            target[name] = record
    return target


def _is_readable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


def _workspace_root(config: EnvLensConfig) -> Path:
    return Path(config.path) if config.path is not None else Path.cwd()


def _select_file(state: LoaderState, config: EnvLensConfig, root: Path, discover: Discover) -> None:
    candidates = discover(root, config.file_patterns, config.preferred_environment)
    state.selected_file = Path(candidates[0]) if candidates else None
    if state.selected_file is not None:
        logger.debug("Selected environment file %s", state.selected_file)


async def _load_file_vars(
    state: LoaderState, config: EnvLensConfig, loader: EnvFileLoader
) -> dict[str, VariableRecord]:
    if state.selected_file is None:
        return {}
    if config.async_loading:
        return await loader.load_async(state.selected_file, state.line_cache)
    return loader.load(state.selected_file, state.line_cache)


async def _load_secrets(config: EnvLensConfig, merged: dict[str, VariableRecord]) -> None:
    detector = None
    for name, manager_config in config.secret_managers.items():
        if not manager_config.enabled:
            continue

        detector = detector or config.detector()
        try:
            manager = ProviderRegistry.create(manager_config.type, detector)
            async with manager:
                records = await manager.load(manager_config)
        except (ProviderError, KeyError) as exc:
            logger.debug("Secret manager %s contributed nothing: %s", name, exc)
            continue
        except Exception as exc:
            logger.debug("Secret manager %s failed unexpectedly: %s", name, exc, exc_info=True)
            continue

        merge_vars(merged, records, manager_config.override)


async def resolve(
    state: LoaderState,
    config: EnvLensConfig,
    force_reload: bool = False,
    discover: Discover | None = None,
) -> dict[str, VariableRecord]:
    """
    Resolve the variable mapping for a session.

    Args:
        state: Session state; its `variables` and `selected_file` are updated
        config: Resolution settings
        force_reload: Drop cached results and parsed lines first
        discover: Candidate file finder, `find_env_files` by default

    Returns:
        Mapping of variable name to record. Unreadable files and failing
        secret managers contribute nothing instead of raising.

    Raises:
        InvalidInputError: If `state` or `config` has the wrong type
    """
    if not isinstance(state, LoaderState):
        raise InvalidInputError(f"resolve() expects a LoaderState, got {type(state).__name__}")
    if not isinstance(config, EnvLensConfig):
        raise InvalidInputError(f"resolve() expects an EnvLensConfig, got {type(config).__name__}")

    discover = discover or find_env_files
    register_built_in_providers()

    root = _workspace_root(config)
    if state.workspace_root is not None and state.workspace_root != root:
        logger.debug("Workspace root changed to %s, dropping cached variables", root)
        state.clear()
        state.selected_file = None
    state.workspace_root = root

    if force_reload:
        state.clear()

    # Cached
    if not force_reload and state.variables:
        if state.selected_file is None or _is_readable(state.selected_file):
            return state.variables

    # SelectFile
    if state.selected_file is None:
        _select_file(state, config, root, discover)

    # ValidateFile
    if state.selected_file is not None and not _is_readable(state.selected_file):
        logger.warning("Environment file %s is no longer readable", state.selected_file)
        state.selected_file = None
        state.clear()
        _select_file(state, config, root, discover)

    # LoadAndMerge
    loader = EnvFileLoader(config.load_options())
    file_vars = await _load_file_vars(state, config, loader)

    merged: dict[str, VariableRecord] = {}
    shell = config.shell
    if shell.enabled and shell.override:
        merge_vars(merged, load_shell_vars(shell, detector=loader.options.detector), True)
        merge_vars(merged, file_vars, False)
    else:
        merge_vars(merged, file_vars, True)
        if shell.enabled:
            merge_vars(merged, load_shell_vars(shell, detector=loader.options.detector), False)

    await _load_secrets(config, merged)

    # Cache
    state.variables = merged
    return merged


def resolve_sync(
    state: LoaderState,
    config: EnvLensConfig,
    force_reload: bool = False,
    discover: Discover | None = None,
) -> dict[str, VariableRecord]:
    """Run `resolve` to completion from synchronous code."""
    return asyncio.run(resolve(state, config, force_reload, discover))


def select_env_file(state: LoaderState, path: Any) -> None:
    """
    Explicitly select the environment file for a session.

    The cached variables are dropped so the next resolve loads the new file.

    Raises:
        InvalidInputError: If `path` is not a non-empty path
    """
    if not isinstance(state, LoaderState):
        raise InvalidInputError(f"select_env_file() expects a LoaderState, got {type(state).__name__}")
    if not isinstance(path, (str, os.PathLike)) or not str(path):
        raise InvalidInputError(f"Invalid environment file path: {path!r}")

    state.selected_file = Path(path)
    state.clear()


@dataclass
class _ReloadRequest:
    force: bool
    context: Any
    root: Path | None
    future: asyncio.Future


_CURRENT = object()


class ResolverService:
    """
    Single owner of one LoaderState.

    Every reload goes through `request_reload`, which queues the request
    for the worker task. A request made while another one for the same
    context is still queued joins it and shares its future. When a
    resolution finishes after the context (or workspace root) has moved on,
    its result is thrown away and the cached state is left as it was.

    Example:
        service = ResolverService(EnvLensConfig.load())
        await service.start()
        variables = await service.request_reload()
        await service.stop()
    """

    def __init__(
        self,
        config: EnvLensConfig,
        state: LoaderState | None = None,
        discover: Discover | None = None,
    ) -> None:
        if not isinstance(config, EnvLensConfig):
            raise InvalidInputError(
                f"ResolverService expects an EnvLensConfig, got {type(config).__name__}"
            )
        self.config = config
        self.state = state or LoaderState()
        self.context: Any = None
        self._discover = discover
        self._queue: asyncio.Queue[_ReloadRequest] | None = None
        self._worker: asyncio.Task | None = None
        self._pending: _ReloadRequest | None = None

    @property
    def variables(self) -> dict[str, VariableRecord]:
        """The last committed mapping."""
        return self.state.variables

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Start the worker task on the running loop."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Stop the worker and cancel every request that has not completed."""
        if self._worker is None:
            return

        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

        while self._queue is not None and not self._queue.empty():
            request = self._queue.get_nowait()
            if not request.future.done():
                request.future.cancel()
        self._pending = None

    def set_context(self, context: Any) -> None:
        """Record the context (e.g. the active file) new requests belong to."""
        self.context = context

    def set_workspace_root(self, root: str | Path | None) -> None:
        """Point the service at another workspace root."""
        self.config = replace(self.config, path=Path(root) if root is not None else None)

    def request_reload(self, force: bool = False, context: Any = _CURRENT) -> asyncio.Future:
        """
        Queue a resolution.

        Args:
            force: Drop cached results before resolving
            context: Context the request is issued for (default: the
                current context)

        Returns:
            A future resolving to the variable mapping

        Raises:
            RuntimeError: If the service has not been started
        """
        if not self.running or self._queue is None:
            raise RuntimeError("ResolverService is not running; call start() first")

        if context is _CURRENT:
            context = self.context

        pending = self._pending
        if pending is not None and pending.context == context and pending.root == self.config.path:
            pending.force = pending.force or force
            return pending.future

        request = _ReloadRequest(
            force=force,
            context=context,
            root=self.config.path,
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending = request
        self._queue.put_nowait(request)
        return request.future

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            request = await self._queue.get()
            if self._pending is request:
                self._pending = None
            try:
                await self._process(request)
            except asyncio.CancelledError:
                if not request.future.done():
                    request.future.cancel()
                raise
            finally:
                self._queue.task_done()

    async def _process(self, request: _ReloadRequest) -> None:
        if request.future.done():
            return

        config = self.config
        state = self.state
        scratch = LoaderState(
            variables=state.variables,
            selected_file=state.selected_file,
            line_cache=state.line_cache.copy(),
            workspace_root=state.workspace_root,
        )

        try:
            variables = await resolve(scratch, config, request.force, self._discover)
        except Exception as exc:
            if not request.future.done():
                request.future.set_exception(exc)
            return

        if self._is_stale(request):
            logger.debug("Discarding stale resolution for context %r", request.context)
            if not request.future.done():
                request.future.set_result(state.variables)
            return

        state.variables = scratch.variables
        state.selected_file = scratch.selected_file
        state.workspace_root = scratch.workspace_root
        state.line_cache = scratch.line_cache
        if not request.future.done():
            request.future.set_result(variables)

    def _is_stale(self, request: _ReloadRequest) -> bool:
        return request.context != self.context or request.root != self.config.path
