"""
Binding Registry
================

Lazily constructs one instance of each rendering/encoding engine and hands out
borrowed handles to it. The first ``acquire`` for an engine kind runs its
loader; callers arriving while that initialization is in flight await the same
task, so every engine is initialized exactly once per process. A failed
initialization is not cached.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from og_image.config.logging import get_logger
from og_image.core.errors import EngineUnavailable
from og_image.models.schemas import EngineKind

logger = get_logger(__name__)

EngineLoader = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class EngineHandle:
    """Borrowed reference to an initialized engine owned by the registry."""

    kind: EngineKind
    engine: Any = field(repr=False)
    initialized_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BindingRegistry:
    """Owner of process-lifetime engine handles."""

    def __init__(self, loaders: Mapping[EngineKind, EngineLoader]):
        self._loaders: Dict[EngineKind, EngineLoader] = dict(loaders)
        self._handles: Dict[EngineKind, EngineHandle] = {}
        self._pending: Dict[EngineKind, "asyncio.Task[EngineHandle]"] = {}
        self.logger: Any = logger.bind(component="binding_registry")

    @property
    def initialized_kinds(self) -> List[EngineKind]:
        return list(self._handles)

    def peek(self, kind: EngineKind) -> Optional[EngineHandle]:
        """Return the handle if already initialized, without loading."""
        return self._handles.get(kind)

    async def acquire(self, kind: EngineKind) -> EngineHandle:
        """
        Get the handle for an engine kind, initializing it on first use.

        Args:
            kind: Engine kind to acquire

        Returns:
            The shared EngineHandle for this kind

        Raises:
            EngineUnavailable: If the engine could not be initialized
        """
        handle = self._handles.get(kind)
        if handle is not None:
            return handle

        task = self._pending.get(kind)
        if task is None:
            task = asyncio.ensure_future(self._initialize(kind))
            self._pending[kind] = task

        # shield so one abandoned caller does not cancel initialization for the rest
        return await asyncio.shield(task)

    async def _initialize(self, kind: EngineKind) -> EngineHandle:
        try:
            loader = self._loaders.get(kind)
            if loader is None:
                raise EngineUnavailable(kind.value, "no binding registered")

            self.logger.debug("Initializing engine", engine=kind.value)
            try:
                engine = await loader()
            except EngineUnavailable:
                raise
            except Exception as e:
                raise EngineUnavailable(kind.value, f"{type(e).__name__}: {e}") from e

            handle = EngineHandle(kind=kind, engine=engine)
            self._handles[kind] = handle
            self.logger.info("Engine initialized", engine=kind.value)
            return handle

        except EngineUnavailable as e:
            self.logger.warning("Engine initialization failed", engine=kind.value, error=str(e))
            raise
        finally:
            self._pending.pop(kind, None)

    async def close(self) -> None:
        """Release engines that hold external resources."""
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            close = getattr(handle.engine, "close", None)
            if close is None:
                continue
            try:
                result = close()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error("Error closing engine", engine=handle.kind.value, error=str(e))
        self.logger.info("Binding registry closed", released=len(handles))
