"""
tests/conftest.py - shared fixtures

Provides a scripted stand-in for CommandRunner so the provisioning services can
be exercised without aws/eksctl/kubectl/helm installed, plus a fake AWS
identity preflight.
"""

from pathlib import Path
from typing import Optional, Sequence

import pytest

from app.services.command_runner import CommandError, CommandResult


class FakeRunner:
    """Replays canned results keyed by argv prefix (longest prefix wins).

    Registering the same prefix more than once queues the results; the last one
    is sticky and is returned for every further matching call.
    """

    def __init__(self, *, missing: Sequence[str] = ()) -> None:
        self.missing = set(missing)
        self.calls: list[tuple[str, ...]] = []
        self.streamed: list[tuple[str, ...]] = []
        self.search_paths: list[Path] = []
        self._responses: dict[tuple[str, ...], list[tuple[int, str, str]]] = {}

    def on(self, *prefix: str, stdout: str = "", stderr: str = "", returncode: int = 0) -> "FakeRunner":
        self._responses.setdefault(tuple(prefix), []).append((returncode, stdout, stderr))
        return self

    def replace(self, *prefix: str, stdout: str = "", stderr: str = "", returncode: int = 0) -> "FakeRunner":
        self._responses[tuple(prefix)] = [(returncode, stdout, stderr)]
        return self

    def which(self, executable: str) -> Optional[str]:
        return None if executable in self.missing else f"/usr/local/bin/{executable}"

    def add_search_path(self, path: Path) -> None:
        self.search_paths.append(path)

    def _lookup(self, argv: tuple[str, ...]) -> tuple[int, str, str]:
        matches = [p for p in self._responses if argv[: len(p)] == p]
        if not matches:
            return (0, "", "")
        queue = self._responses[max(matches, key=len)]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def run(self, args, *, check=True, stream=False, env=None) -> CommandResult:
        argv = tuple(str(a) for a in args)
        self.calls.append(argv)
        if stream:
            self.streamed.append(argv)
        returncode, stdout, stderr = self._lookup(argv)
        result = CommandResult(args=argv, returncode=returncode, stdout=stdout, stderr=stderr)
        if check and not result.ok:
            raise CommandError(result)
        return result

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == prefix for call in self.calls)

    def calls_for(self, *prefix: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[: len(prefix)] == prefix]


class FakeIdentity:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.regions: list[str] = []

    async def caller_identity(self, *, region: str) -> dict[str, str]:
        self.regions.append(region)
        if self.error is not None:
            raise self.error
        return {"Account": "123456789012", "Arn": "arn:aws:iam::123456789012:user/admin"}


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture(autouse=True)
def clean_app_environment(monkeypatch):
    """Keep the developer's shell settings out of config-dependent tests."""

    for name in ("ENVIRONMENT", "PORT", "HOST", "DATABASE_URL", "DATABASE_TIMEOUT_SECONDS", "AWS_PROFILE"):
        monkeypatch.delenv(name, raising=False)
    yield
