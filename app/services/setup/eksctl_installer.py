from __future__ import annotations

import io
import logging
import platform
import tarfile
from pathlib import Path
from typing import Optional

import aiohttp
from tqdm import tqdm

from app.services.setup.provisioning import ProvisioningError

logger = logging.getLogger(__name__)


class EksctlInstaller:
    """Download the latest eksctl release tarball and unpack the binary."""

    RELEASE_URL = "https://github.com/eksctl-io/eksctl/releases/latest/download/eksctl_{system}_{arch}.tar.gz"
    _ARCH_ALIASES = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64"}
    _CHUNK_SIZE = 64 * 1024

    def __init__(self, *, show_progress: bool = True, timeout_seconds: float = 300.0) -> None:
        self._show_progress = show_progress
        self._timeout_seconds = timeout_seconds

    @classmethod
    def release_url(cls, *, system: Optional[str] = None, machine: Optional[str] = None) -> str:
        system = system or platform.system()
        machine = (machine or platform.machine()).lower()

        if system not in ("Linux", "Darwin"):
            raise ProvisioningError(f"Automatic eksctl install is not supported on {system}; install it manually")
        arch = cls._ARCH_ALIASES.get(machine)
        if arch is None:
            raise ProvisioningError(f"Unsupported CPU architecture for eksctl: {machine}")

        return cls.RELEASE_URL.format(system=system, arch=arch)

    async def _download(self, url: str) -> bytes:
        timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
        buffer = io.BytesIO()
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        raise ProvisioningError(f"Failed to download eksctl (HTTP {resp.status}): {url}")
                    with tqdm(
                        total=resp.content_length,
                        desc="Downloading eksctl",
                        unit="B",
                        unit_scale=True,
                        disable=not self._show_progress,
                    ) as bar:
                        async for chunk in resp.content.iter_chunked(self._CHUNK_SIZE):
                            buffer.write(chunk)
                            bar.update(len(chunk))
        except aiohttp.ClientError as exc:
            raise ProvisioningError(f"Failed to download eksctl: {exc}") from exc

        return buffer.getvalue()

    @staticmethod
    def _extract(archive: bytes, install_dir: Path) -> Path:
        try:
            with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tar:
                member = tar.getmember("eksctl")
                extracted = tar.extractfile(member)
                if extracted is None:
                    raise ProvisioningError("eksctl entry in the release archive is not a regular file")
                binary = extracted.read()
        except (tarfile.TarError, KeyError) as exc:
            raise ProvisioningError(f"Invalid eksctl release archive: {exc}") from exc

        install_dir.mkdir(parents=True, exist_ok=True)
        target = install_dir / "eksctl"
        target.write_bytes(binary)
        target.chmod(0o755)
        return target

    async def install(self, install_dir: Path) -> Path:
        url = self.release_url()
        logger.info("eksctl not found, installing eksctl from %s", url)
        archive = await self._download(url)
        target = self._extract(archive, install_dir)
        logger.info("Installed eksctl to %s", target)
        return target
