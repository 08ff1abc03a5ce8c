"""
Tests for the EKS provisioning pipeline.

Covers:
- cluster/nodegroup create vs. skip
- KMS key reuse through its alias
- add-on toggles and non-fatal add-on failures
- eksctl bootstrap when it is not on PATH
"""

import asyncio
import json
from pathlib import Path

import pytest

from app.services.command_runner import CommandError
from app.services.config import EksSetupConfig
from app.services.setup.eks_setup_service import EksSetupService
from conftest import FakeRunner

KMS_ARN = "arn:aws:kms:us-east-1:123456789012:key/abcd-1234"
CLUSTER_NOT_FOUND = (
    "Error: unable to describe cluster control plane: operation error EKS: DescribeCluster, "
    "ResourceNotFoundException: No cluster found for name: my-webapp-cluster."
)
NODEGROUP_NOT_FOUND = "Error: nodegroup with name ng-spot not found"


class FakeInstaller:
    def __init__(self, runner: FakeRunner) -> None:
        self.runner = runner
        self.installed_to: list[Path] = []

    async def install(self, install_dir: Path) -> Path:
        self.installed_to.append(install_dir)
        self.runner.missing.discard("eksctl")
        return install_dir / "eksctl"


def existing_cluster(runner: FakeRunner) -> FakeRunner:
    return (
        runner.on("eksctl", "get", "cluster", stdout="NAME\tREGION\nmy-webapp-cluster\tus-east-1\n")
        .on("eksctl", "get", "nodegroup", stdout="CLUSTER\tNODEGROUP\nmy-webapp-cluster\tng-spot\n")
        .on("aws", "kms", "describe-key", stdout=KMS_ARN + "\n")
        .on("kubectl", "-n", "kube-system", "get", "pods", stdout="coredns-abc   1/1   Running   0   5m\n")
    )


def new_cluster(runner: FakeRunner) -> FakeRunner:
    return (
        runner.on("eksctl", "get", "cluster", returncode=1, stderr=CLUSTER_NOT_FOUND)
        .on("eksctl", "get", "nodegroup", returncode=1, stderr=NODEGROUP_NOT_FOUND)
        .on(
            "aws",
            "kms",
            "describe-key",
            returncode=254,
            stderr="An error occurred (NotFoundException) when calling the DescribeKey operation: "
            "Alias arn:aws:kms:us-east-1:123456789012:alias/eks-my-webapp-cluster-secrets is not found.",
        )
        .on("aws", "kms", "create-key", stdout=KMS_ARN + "\n")
        .on("kubectl", "-n", "kube-system", "get", "pods", stdout="coredns-abc   1/1   Running   0   5m\n")
    )


def make_service(runner, *, installer=None, **overrides) -> EksSetupService:
    return EksSetupService(
        EksSetupConfig(**overrides),
        runner=runner,
        installer=installer or FakeInstaller(runner),
        show_progress=False,
    )


class TestEksCluster:
    def test_creates_cluster_and_spot_nodegroup(self, runner):
        result = asyncio.run(make_service(new_cluster(runner)).setup())

        assert result.created == ["Cluster my-webapp-cluster", "Spot nodegroup ng-spot"]
        (create,) = runner.calls_for("eksctl", "create", "cluster")
        assert create == (
            "eksctl",
            "create",
            "cluster",
            "--name",
            "my-webapp-cluster",
            "--region",
            "us-east-1",
            "--nodegroup-name",
            "ng-ondemand",
            "--node-type",
            "t3.medium",
            "--nodes",
            "2",
            "--nodes-min",
            "1",
            "--nodes-max",
            "4",
            "--managed",
            "--with-oidc",
        )
        assert create in runner.streamed

    def test_spot_nodegroup_arguments(self, runner):
        asyncio.run(make_service(new_cluster(runner), node_type="m5.large").setup())

        (call,) = runner.calls_for("eksctl", "create", "nodegroup")
        assert call[call.index("--name") + 1] == "ng-spot"
        assert call[call.index("--node-type") + 1] == "m5.large"
        assert call[call.index("--nodes-min") + 1] == "0"
        assert "--spot" in call
        assert "--managed" in call

    def test_eks_version_is_passed_through(self, runner):
        asyncio.run(make_service(new_cluster(runner), eks_version="1.29").setup())

        (call,) = runner.calls_for("eksctl", "create", "cluster")
        assert call[-2:] == ("--version", "1.29")

    def test_rerun_skips_cluster_and_nodegroup(self, runner):
        result = asyncio.run(make_service(existing_cluster(runner)).setup())

        assert not runner.ran("eksctl", "create", "cluster")
        assert not runner.ran("eksctl", "create", "nodegroup")
        assert result.created == []
        assert result.skipped == ["Cluster my-webapp-cluster", "Spot nodegroup ng-spot"]
        assert "coredns" in result.system_pods

    def test_unexpected_probe_error_aborts(self, runner):
        existing_cluster(runner).replace(
            "eksctl", "get", "cluster", returncode=1, stderr="Error: checking AWS STS access: ExpiredToken"
        )

        with pytest.raises(CommandError, match="ExpiredToken"):
            asyncio.run(make_service(runner).setup())

        assert not runner.ran("eksctl", "create")
        assert not runner.ran("helm")


class TestEksKms:
    def test_kms_key_created_with_alias_and_encryption_enabled(self, runner):
        result = asyncio.run(make_service(new_cluster(runner), create_kms_key=True).setup())

        assert result.kms_key_arn == KMS_ARN
        (alias,) = runner.calls_for("aws", "kms", "create-alias")
        assert alias[alias.index("--alias-name") + 1] == "alias/eks-my-webapp-cluster-secrets"
        assert alias[alias.index("--target-key-id") + 1] == KMS_ARN
        (encrypt,) = runner.calls_for("eksctl", "utils", "enable-secrets-encryption")
        assert encrypt[encrypt.index("--key-arn") + 1] == KMS_ARN

    def test_existing_key_is_reused(self, runner):
        result = asyncio.run(make_service(existing_cluster(runner), create_kms_key=True).setup())

        assert result.kms_key_arn == KMS_ARN
        assert not runner.ran("aws", "kms", "create-key")

    def test_new_key_is_tagged_with_cluster(self, runner):
        asyncio.run(make_service(new_cluster(runner), create_kms_key=True).setup())

        (create,) = runner.calls_for("aws", "kms", "create-key")
        assert create[create.index("--tags") + 1] == "TagKey=eks-secrets-cluster,TagValue=my-webapp-cluster"

    def test_rerun_after_failed_alias_adopts_existing_key(self, runner):
        new_cluster(runner).on("aws", "kms", "create-alias", returncode=254, stderr="An error occurred (Throttling)")
        with pytest.raises(CommandError, match="Throttling"):
            asyncio.run(make_service(runner, create_kms_key=True).setup())
        assert len(runner.calls_for("aws", "kms", "create-key")) == 1

        rerun = new_cluster(FakeRunner()).on(
            "aws", "resourcegroupstaggingapi", "get-resources", stdout=json.dumps([KMS_ARN])
        )
        result = asyncio.run(make_service(rerun, create_kms_key=True).setup())

        assert not rerun.ran("aws", "kms", "create-key")
        (alias,) = rerun.calls_for("aws", "kms", "create-alias")
        assert alias[alias.index("--target-key-id") + 1] == KMS_ARN
        assert result.kms_key_arn == KMS_ARN

    def test_no_kms_calls_without_flag(self, runner):
        asyncio.run(make_service(new_cluster(runner)).setup())

        assert not runner.ran("aws", "kms")
        assert not runner.ran("eksctl", "utils", "enable-secrets-encryption")


class TestEksAddons:
    def test_default_addons_installed(self, runner):
        asyncio.run(make_service(existing_cluster(runner)).setup())

        assert runner.ran("eksctl", "utils", "update-cluster-logging")
        assert runner.ran("eksctl", "utils", "associate-iam-oidc-provider")
        accounts = runner.calls_for("eksctl", "create", "iamserviceaccount")
        assert [c[c.index("--name") + 1] for c in accounts] == ["aws-load-balancer-controller", "cluster-autoscaler"]
        (install,) = runner.calls_for("helm", "upgrade", "--install")
        assert "clusterName=my-webapp-cluster" in install
        assert runner.ran("kubectl", "apply", "-f")

    def test_toggles_disable_addons(self, runner):
        asyncio.run(
            make_service(
                existing_cluster(runner),
                enable_alb=False,
                enable_autoscaler=False,
                enable_cloudwatch_logging=False,
            ).setup()
        )

        assert not runner.ran("helm")
        assert not runner.ran("eksctl", "create", "iamserviceaccount")
        assert not runner.ran("eksctl", "utils", "update-cluster-logging")
        assert not runner.ran("kubectl", "apply")
        assert runner.ran("eksctl", "utils", "associate-iam-oidc-provider")

    def test_optional_failures_only_warn(self, runner):
        (
            existing_cluster(runner)
            .on("eksctl", "utils", "update-cluster-logging", returncode=1, stderr="already enabled")
            .on("helm", "repo", "add", returncode=1, stderr='repository name (eks) already exists')
            .on("kubectl", "wait", returncode=1, stderr="timed out waiting for the condition")
        )

        result = asyncio.run(make_service(runner).setup())

        assert result.warnings == [
            "CloudWatch logging update returned non-zero (may already be configured)",
            "Timeout waiting for nodes; check 'kubectl get nodes'",
        ]
        assert runner.ran("helm", "upgrade", "--install")

    def test_helm_install_failure_aborts(self, runner):
        existing_cluster(runner).on("helm", "upgrade", returncode=1, stderr="Error: INSTALLATION FAILED")

        with pytest.raises(CommandError, match="INSTALLATION FAILED"):
            asyncio.run(make_service(runner).setup())

        assert not runner.ran("kubectl", "wait")


class TestEksTools:
    def test_installs_eksctl_when_missing(self):
        runner = existing_cluster(FakeRunner(missing=["eksctl"]))
        installer = FakeInstaller(runner)

        asyncio.run(make_service(runner, installer=installer, eksctl_install_dir=Path("/opt/bin")).setup())

        assert installer.installed_to == [Path("/opt/bin")]
        assert runner.search_paths == [Path("/opt/bin")]

    def test_eksctl_present_is_not_reinstalled(self, runner):
        installer = FakeInstaller(runner)

        asyncio.run(make_service(existing_cluster(runner), installer=installer).setup())

        assert installer.installed_to == []

    def test_missing_kubectl_aborts_before_any_command(self):
        runner = existing_cluster(FakeRunner(missing=["kubectl"]))

        with pytest.raises(CommandError, match="Required command not found: kubectl"):
            asyncio.run(make_service(runner).setup())

        assert runner.calls == []
