"""
Extension Manager - Registration and phase-by-phase execution of extensions.

Extensions run in registration order. A failing extension produces a failed
:class:`ExtensionResult` and the chain carries on with the input it had;
nothing an extension does can abort a phase.
"""

import asyncio
from typing import Any

import structlog

from ..concurrency import RWLock
from .base import Extension, ExtensionContext, ExtensionInfo, ExtensionPhase, ExtensionResult

logger = structlog.get_logger()


class ExtensionManager:
    """Holds registered extensions and runs them per phase."""

    def __init__(self, extension_timeout: float | None = 30.0):
        self._extensions: dict[str, Extension] = {}
        self._configs: dict[str, dict[str, Any]] = {}
        self._lock = RWLock()
        self.extension_timeout = extension_timeout

    async def register(
        self,
        extension: Extension,
        context: ExtensionContext | None = None,
    ) -> None:
        """Register an extension, initializing it first when a context is given.

        Registering a name that already exists replaces that extension but
        keeps its position in the execution order. The replaced extension is
        cleaned up.
        """
        if context is not None:
            await extension.initialize(context)

        async with self._lock.write():
            replaced = self._extensions.get(extension.name)
            self._extensions[extension.name] = extension

        if replaced is not None and replaced is not extension:
            try:
                await replaced.cleanup()
            except Exception as e:
                logger.warning("Replaced extension cleanup failed", extension=extension.name, error=str(e))

        logger.info("Extension registered", extension=extension.name, version=extension.version)

    async def unregister(self, name: str) -> bool:
        """Remove an extension and run its cleanup.

        Returns False if no extension has that name. Cleanup errors propagate
        after the extension has already been removed.
        """
        async with self._lock.write():
            extension = self._extensions.pop(name, None)
            self._configs.pop(name, None)

        if extension is None:
            return False

        logger.info("Extension unregistered", extension=name)
        await extension.cleanup()
        return True

    async def execute_phase(
        self,
        phase: ExtensionPhase,
        context: ExtensionContext,
        input: dict[str, Any],
        timeout: float | None = None,
    ) -> tuple[Any, list[ExtensionResult]]:
        """Run every extension that handles ``phase``.

        ``timeout`` overrides the manager's per-extension timeout for this call.

        Returns:
            The final chained input and one result per extension that ran.
        """
        async with self._lock.read():
            extensions = list(self._extensions.values())

        current = input
        results: list[ExtensionResult] = []

        for extension in extensions:
            if phase not in extension.phases():
                continue

            result = await self._run_one(
                extension,
                phase,
                context,
                current,
                timeout if timeout is not None else self.extension_timeout,
            )
            if result is None:
                continue

            results.append(result)
            if result.success and result.data is not None:
                current = result.data

        return current, results

    async def _run_one(
        self,
        extension: Extension,
        phase: ExtensionPhase,
        context: ExtensionContext,
        input: Any,
        timeout: float | None,
    ) -> ExtensionResult | None:
        try:
            if not await extension.should_execute(phase, context, input):
                return None
            return await asyncio.wait_for(
                extension.execute(phase, context, input),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Extension timed out", extension=extension.name, phase=phase.value)
            return ExtensionResult.failure(
                f"Extension {extension.name} timed out after {timeout}s"
            )
        except Exception as e:
            logger.warning("Extension failed", extension=extension.name, phase=phase.value, error=str(e))
            return ExtensionResult.failure(f"Extension {extension.name} failed: {e}")

    async def list_extensions(self) -> list[str]:
        async with self._lock.read():
            return list(self._extensions)

    async def get_extension_info(self, name: str) -> ExtensionInfo | None:
        async with self._lock.read():
            extension = self._extensions.get(name)
        return extension.info() if extension else None

    async def configure_extension(self, name: str, config: dict[str, Any]) -> None:
        """Store configuration for an extension and pass it on if it is registered."""
        async with self._lock.write():
            self._configs[name] = dict(config)
            extension = self._extensions.get(name)

        if extension is not None:
            await extension.update_config(config)

    async def get_extension_config(self, name: str) -> dict[str, Any] | None:
        async with self._lock.read():
            config = self._configs.get(name)
            return dict(config) if config is not None else None

    async def shutdown(self) -> None:
        """Unregister every extension, logging cleanup failures."""
        for name in await self.list_extensions():
            try:
                await self.unregister(name)
            except Exception as e:
                logger.error("Extension cleanup failed", extension=name, error=str(e))
