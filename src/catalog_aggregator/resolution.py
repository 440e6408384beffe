"""
Resolution Executor for the catalog aggregator.

Turns a directory entry into playable stream URLs by walking a fallback
chain of resolver plugins:

    pending -> attempting(i) -> succeeded | exhausted

Attempts run strictly one after another, each bounded by its own timeout.
Only timeouts are retried (at most ``timeout_retries`` times per plugin);
no-match and error outcomes move straight to the next plugin. Exhaustion is
reported in the result, never raised.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from .audit_logger import AuditLogger, ComponentLogging
from .config import ResolutionConfig
from .enums import AttemptOutcome, ResolutionState
from .exceptions import NoResolverAvailableError, ResolutionExhaustedError
from .models import (
    ResolutionAttempt,
    ResolutionHint,
    ResolutionResult,
    ResolvedStream,
    ResolverPlugin,
    SiteEntry,
)
from .plugin_registry import ResolverPluginRegistry


@runtime_checkable
class Resolver(Protocol):
    """What a loaded plugin provides."""

    async def resolve(
        self,
        entry: SiteEntry,
        hint: Optional[ResolutionHint],
    ) -> Optional[ResolvedStream]:
        """Return a stream, or None when the plugin has nothing for this entry."""
        ...


@dataclass
class ResolutionStatistics:
    """Counters for resolve() executions."""

    executions: int = 0
    successes: int = 0
    failures: int = 0
    total_time_ms: float = 0.0

    @property
    def average_time_ms(self) -> float:
        return self.total_time_ms / self.executions if self.executions else 0.0

    @property
    def success_rate(self) -> float:
        return self.successes / self.executions if self.executions else 0.0


class ResolutionExecutor(ComponentLogging):
    """Runs the resolver fallback chain for one entry at a time."""

    COMPONENT = "ResolutionExecutor"

    def __init__(
        self,
        registry: ResolverPluginRegistry,
        config: Optional[ResolutionConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._registry = registry
        self._config = config or ResolutionConfig()
        self._logger = logger
        self.stats = ResolutionStatistics()

    def build_chain(
        self,
        entry: SiteEntry,
        hint: Optional[ResolutionHint] = None,
    ) -> list[str]:
        """
        Plugin ids to try, in order.

        Explicit fallback ids (from ``hint``, else from the entry) win over
        registry candidates; ids that are not loaded are skipped.
        """
        explicit: tuple[str, ...] = ()
        if hint is not None and hint.fallback_parsers:
            explicit = hint.fallback_parsers
        elif entry.resolver_hint is not None and entry.resolver_hint.fallback_parsers:
            explicit = entry.resolver_hint.fallback_parsers

        if explicit:
            chain = []
            for plugin_id in explicit:
                if plugin_id not in chain and self._registry.is_eligible(plugin_id):
                    chain.append(plugin_id)
            return chain

        return [plugin.id for plugin in self._registry.candidates(entry.kind)]

    async def resolve(
        self,
        entry: SiteEntry,
        hint: Optional[ResolutionHint] = None,
    ) -> ResolutionResult:
        """
        Resolve an entry through the fallback chain.

        Args:
            entry: The site entry to resolve
            hint: Optional caller hint overriding the entry's own hint

        Returns:
            ResolutionResult with the attempt log; ``success`` is False and
            ``error`` holds a ResolutionExhaustedError when every plugin failed

        Raises:
            NoResolverAvailableError: If no loaded plugin can serve the entry
        """
        start_time = time.perf_counter()
        chain = self.build_chain(entry, hint)

        if not chain:
            self.stats.executions += 1
            self.stats.failures += 1
            self._log_warn("No resolver available", {"entry_key": entry.key})
            raise NoResolverAvailableError(
                code="no_resolver",
                message=f"No loaded resolver plugin can serve entry '{entry.key}'",
                details={"entry_key": entry.key, "kind": entry.kind.value},
            )

        effective_hint = hint if hint is not None else entry.resolver_hint
        state = ResolutionState.PENDING
        attempts: list[ResolutionAttempt] = []
        stream: Optional[ResolvedStream] = None

        for plugin_id in chain:
            # Unloaded since the chain was built.
            plugin = self._registry.get(plugin_id)
            if plugin is None or not self._registry.is_eligible(plugin_id):
                continue

            state = ResolutionState.ATTEMPTING
            attempt, stream = await self._attempt(plugin, entry, effective_hint)
            attempts.append(attempt)
            self._log_debug(
                f"Resolution attempt: {plugin_id}",
                {
                    "entry_key": entry.key,
                    "outcome": attempt.outcome.value,
                    "tries": attempt.tries,
                },
            )
            if attempt.outcome == AttemptOutcome.SUCCESS:
                state = ResolutionState.SUCCEEDED
                break

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.stats.executions += 1
        self.stats.total_time_ms += elapsed_ms

        if state == ResolutionState.SUCCEEDED:
            self.stats.successes += 1
            self._log_info(
                f"Resolved entry: {entry.key}",
                {"plugin_id": attempts[-1].plugin_id, "attempts": len(attempts)},
            )
            return ResolutionResult(
                entry_key=entry.key,
                state=state,
                attempts=tuple(attempts),
                stream=stream,
            )

        self.stats.failures += 1
        error = ResolutionExhaustedError(
            code="resolution_exhausted",
            message=f"All {len(attempts)} resolver attempts failed for '{entry.key}'",
            details={
                "entry_key": entry.key,
                "attempts": [
                    {"plugin_id": a.plugin_id, "outcome": a.outcome.value}
                    for a in attempts
                ],
            },
        )
        self._log_warn(f"Resolution exhausted: {entry.key}", error.details)
        return ResolutionResult(
            entry_key=entry.key,
            state=ResolutionState.EXHAUSTED,
            attempts=tuple(attempts),
            error=error,
        )

    async def _attempt(
        self,
        plugin: ResolverPlugin,
        entry: SiteEntry,
        hint: Optional[ResolutionHint],
    ) -> tuple[ResolutionAttempt, Optional[ResolvedStream]]:
        start_time = time.perf_counter()
        max_tries = 1 + self._config.timeout_retries
        tries = 0
        detail = None

        while tries < max_tries:
            tries += 1
            try:
                stream = await asyncio.wait_for(
                    plugin.resolver.resolve(entry, hint),
                    self._config.attempt_timeout_seconds,
                )
            except asyncio.TimeoutError:
                outcome = AttemptOutcome.TIMEOUT
                detail = f"Timed out after {self._config.attempt_timeout_seconds}s"
                continue
            except Exception as e:
                outcome = AttemptOutcome.ERROR
                detail = f"{type(e).__name__}: {e}"
                stream = None
                break

            if stream is None or not stream.urls:
                outcome = AttemptOutcome.NO_MATCH
                detail = None
                stream = None
            else:
                outcome = AttemptOutcome.SUCCESS
                detail = None
            break
        else:
            stream = None

        attempt = ResolutionAttempt(
            plugin_id=plugin.id,
            outcome=outcome,
            elapsed_ms=(time.perf_counter() - start_time) * 1000,
            tries=tries,
            detail=detail,
        )
        return attempt, stream
