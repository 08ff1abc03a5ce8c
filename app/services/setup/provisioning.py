from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from tqdm import tqdm

from app.services.command_runner import CommandError, CommandNotFoundError, CommandResult, CommandRunner

logger = logging.getLogger(__name__)


class ProvisioningError(RuntimeError):
    pass


def _mentions(result: CommandResult, markers: Sequence[str]) -> bool:
    output = f"{result.stderr}\n{result.stdout}".lower()
    return any(marker.lower() in output for marker in markers)


@dataclass(frozen=True)
class ProvisioningStep:
    description: str
    action: Callable[[], Awaitable[None]]


class ProvisioningService:
    """Sequential, stop-on-first-error driver shared by the ECS and EKS setups.

    Subclasses build a list of `ProvisioningStep`s; each step uses the helpers
    below to probe for a resource and create it only when it is absent.
    """

    def __init__(self, *, runner: CommandRunner, show_progress: bool = True) -> None:
        self._runner = runner
        self._show_progress = show_progress
        self.created: list[str] = []
        self.skipped: list[str] = []
        self.warnings: list[str] = []

    async def _run_steps(self, title: str, steps: Sequence[ProvisioningStep]) -> None:
        with tqdm(total=len(steps), desc=title, unit="step", disable=not self._show_progress) as bar:
            for step in steps:
                logger.info("%s", step.description)
                await step.action()
                bar.update(1)

    def _require_commands(self, *executables: str) -> None:
        for executable in executables:
            if self._runner.which(executable) is None:
                raise CommandNotFoundError(executable)

    async def _probe(self, args: Sequence[str], *, not_found: Sequence[str] = ()) -> Optional[CommandResult]:
        """Run a describe/get command.

        Returns the result when the resource exists, ``None`` when the tool failed
        with one of the `not_found` markers, and raises CommandError otherwise.
        """

        result = await self._runner.run(args, check=False)
        if result.ok:
            return result
        if _mentions(result, not_found):
            return None
        raise CommandError(result)

    async def _apply(self, args: Sequence[str], *, already_applied: Sequence[str] = ()) -> bool:
        """Run a follow-up change (policy attachment, ingress rule) on every pass.

        Returns False when the tool reports one of the `already_applied` markers;
        any other failure raises CommandError.
        """

        result = await self._runner.run(args, check=False)
        if result.ok:
            return True
        if _mentions(result, already_applied):
            logger.debug("%s already applied", result.command)
            return False
        raise CommandError(result)

    async def _ensure(
        self,
        resource: str,
        *,
        exists: Callable[[], Awaitable[bool]],
        create: Callable[[], Awaitable[None]],
    ) -> bool:
        """Create `resource` unless `exists` says it is already there. Returns True if created."""

        if await exists():
            logger.info("%s already exists, skipping", resource)
            self.skipped.append(resource)
            return False

        await create()
        logger.info("%s created", resource)
        self.created.append(resource)
        return True

    async def _optional(
        self,
        args: Sequence[str],
        *,
        warning: Optional[str] = None,
        stream: bool = False,
    ) -> Optional[CommandResult]:
        """Run a non-critical command; a failure is logged instead of aborting the run."""

        result = await self._runner.run(args, check=False, stream=stream)
        if result.ok:
            return result

        if warning:
            logger.warning("%s", warning)
            self.warnings.append(warning)
        else:
            logger.debug("Ignoring failure of %s: %s", result.command, result.stderr.strip())
        return None
