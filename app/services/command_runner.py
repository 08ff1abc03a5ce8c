from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

_READ_CHUNK_SIZE = 64 * 1024


class CommandError(RuntimeError):
    """A child process exited non-zero.

    ``str(exc)`` is the tool's own error text so it can be shown to the operator
    unchanged.
    """

    def __init__(self, result: "CommandResult") -> None:
        self.result = result
        message = result.stderr.strip() or result.stdout.strip() or f"{result.command} exited with {result.returncode}"
        super().__init__(message)


class CommandNotFoundError(CommandError):
    def __init__(self, executable: str) -> None:
        super().__init__(
            CommandResult(args=(executable,), returncode=127, stderr=f"Required command not found: {executable}")
        )


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return " ".join(self.args)

    def text(self) -> str:
        return self.stdout.strip()

    def json(self) -> Any:
        payload = self.stdout.strip()
        if not payload:
            return {}
        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            raise CommandError(
                CommandResult(
                    args=self.args,
                    returncode=self.returncode,
                    stdout=self.stdout,
                    stderr=f"Unexpected non-JSON output from {self.command}: {exc}",
                )
            ) from exc


@dataclass
class CommandRunner:
    """Run external CLIs (aws, eksctl, kubectl, helm) one at a time.

    `profile` is exported as AWS_PROFILE to every child so aws/eksctl/kubectl
    (through the aws exec credential plugin) resolve the same credentials.
    """

    profile: Optional[str] = None
    extra_paths: list[Path] = field(default_factory=list)

    def add_search_path(self, path: Path) -> None:
        if path not in self.extra_paths:
            self.extra_paths.insert(0, path)

    def _environment(self, overrides: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        env = dict(os.environ)
        if self.profile:
            env["AWS_PROFILE"] = self.profile
        if self.extra_paths:
            env["PATH"] = os.pathsep.join([*(str(p) for p in self.extra_paths), env.get("PATH", "")])
        if overrides:
            env.update(overrides)
        return env

    def which(self, executable: str) -> Optional[str]:
        return shutil.which(executable, path=self._environment().get("PATH"))

    @staticmethod
    async def _pump(stream: Optional[asyncio.StreamReader], sink: list[str], log: bool) -> None:
        # Fixed-size reads: a single output line can exceed the StreamReader line limit.
        if stream is None:
            return
        chunks: list[bytes] = []
        pending = b""
        while True:
            chunk = await stream.read(_READ_CHUNK_SIZE)
            if not chunk:
                break
            chunks.append(chunk)
            if log:
                *lines, pending = (pending + chunk).split(b"\n")
                for line in lines:
                    logger.info("%s", line.decode("utf-8", errors="replace").rstrip())
        if log and pending:
            logger.info("%s", pending.decode("utf-8", errors="replace").rstrip())
        sink.append(b"".join(chunks).decode("utf-8", errors="replace"))

    async def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        stream: bool = False,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """Run `args` and wait for it to finish.

        Args:
            args: Executable followed by its arguments (no shell).
            check: Raise CommandError on a non-zero exit.
            stream: Log stdout/stderr lines as they arrive (for long eksctl/helm runs).
            env: Extra environment variables for the child.
        """

        argv = tuple(str(a) for a in args)
        executable = self.which(argv[0])
        if executable is None:
            raise CommandNotFoundError(argv[0])

        logger.debug("Running: %s", " ".join(argv))
        process = await asyncio.create_subprocess_exec(
            executable,
            *argv[1:],
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._environment(env),
        )

        out: list[str] = []
        err: list[str] = []
        try:
            await asyncio.gather(self._pump(process.stdout, out, stream), self._pump(process.stderr, err, stream))
        except BaseException:
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise
        returncode = await process.wait()

        result = CommandResult(args=argv, returncode=returncode, stdout="".join(out), stderr="".join(err))
        if check and not result.ok:
            raise CommandError(result)
        return result
