"""
Tests for the eksctl bootstrap (release URL selection and archive unpacking).
"""

import asyncio
import io
import os
import tarfile

import pytest

from app.services.setup.eksctl_installer import EksctlInstaller
from app.services.setup.provisioning import ProvisioningError


def make_archive(name: str = "eksctl", payload: bytes = b"#!/bin/sh\necho eksctl\n") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        info = tarfile.TarInfo(name=name)
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))
    return buffer.getvalue()


class TestReleaseUrl:
    @pytest.mark.parametrize(
        "system, machine, asset",
        [
            ("Linux", "x86_64", "eksctl_Linux_amd64.tar.gz"),
            ("Linux", "aarch64", "eksctl_Linux_arm64.tar.gz"),
            ("Darwin", "arm64", "eksctl_Darwin_arm64.tar.gz"),
        ],
    )
    def test_asset_per_platform(self, system, machine, asset):
        url = EksctlInstaller.release_url(system=system, machine=machine)

        assert url == f"https://github.com/eksctl-io/eksctl/releases/latest/download/{asset}"

    def test_windows_not_supported(self):
        with pytest.raises(ProvisioningError, match="Windows"):
            EksctlInstaller.release_url(system="Windows", machine="AMD64")

    def test_unknown_architecture(self):
        with pytest.raises(ProvisioningError, match="s390x"):
            EksctlInstaller.release_url(system="Linux", machine="s390x")


class TestExtract:
    def test_writes_executable(self, tmp_path):
        target = EksctlInstaller._extract(make_archive(), tmp_path / "bin")

        assert target == tmp_path / "bin" / "eksctl"
        assert target.read_bytes().startswith(b"#!/bin/sh")
        assert os.access(target, os.X_OK)

    def test_archive_without_binary(self, tmp_path):
        with pytest.raises(ProvisioningError, match="Invalid eksctl release archive"):
            EksctlInstaller._extract(make_archive(name="README.md"), tmp_path)

    def test_corrupt_archive(self, tmp_path):
        with pytest.raises(ProvisioningError, match="Invalid eksctl release archive"):
            EksctlInstaller._extract(b"not a tarball", tmp_path)


class TestInstall:
    def test_downloads_and_unpacks(self, tmp_path, monkeypatch):
        installer = EksctlInstaller(show_progress=False)
        requested = []

        async def fake_download(url):
            requested.append(url)
            return make_archive()

        monkeypatch.setattr(installer, "_download", fake_download)
        monkeypatch.setattr(EksctlInstaller, "release_url", classmethod(lambda cls: "https://example.test/eksctl.tar.gz"))

        target = asyncio.run(installer.install(tmp_path))

        assert requested == ["https://example.test/eksctl.tar.gz"]
        assert target.exists()
