from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from app.services.command_runner import CommandRunner
from app.services.config import EksSetupConfig
from app.services.setup.eksctl_installer import EksctlInstaller
from app.services.setup.provisioning import ProvisioningService, ProvisioningStep

logger = logging.getLogger(__name__)

CONTROL_PLANE_LOG_TYPES = "api,authenticator,audit,controllerManager,scheduler"
EKS_CHARTS_REPO = ("eks", "https://aws.github.io/eks-charts")
ALB_CONTROLLER_POLICY_ARN = "arn:aws:iam::aws:policy/AWSLoadBalancerControllerIAMPolicy"
AUTOSCALER_POLICY_ARN = "arn:aws:iam::aws:policy/AutoScalingFullAccess"
KMS_CLUSTER_TAG = "eks-secrets-cluster"


@dataclass
class EksSetupResult:
    config: EksSetupConfig
    kms_key_arn: Optional[str] = None
    system_pods: str = ""
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def next_steps(self) -> str:
        cfg = self.config
        return (
            "Next steps / notes:\n"
            "  - To use IRSA for additional addons, create IAM service accounts via eksctl\n"
            f"    e.g. eksctl create iamserviceaccount --cluster {cfg.cluster_name} --name external-dns "
            "--namespace kube-system --attach-policy-arn <policy_arn> --approve\n"
            "  - If you enabled KMS, confirm secrets encryption:\n"
            f"      aws eks describe-cluster --region {cfg.region} --name {cfg.cluster_name} "
            '--query "cluster.encryptionConfig"\n'
            "  - Monitor CloudWatch logs and set alarms for suspicious activity.\n"
            "  - Consider installing:\n"
            "      - ExternalDNS (for automated DNS)\n"
            "      - Cert-Manager (TLS)\n"
            "      - Prometheus & Grafana (observability)\n"
            "      - EBS CSI driver if you need dynamic storage\n"
        )


class EksSetupService(ProvisioningService):
    """Provision a managed EKS cluster (on-demand + spot node groups) and its add-ons.

    The heavy lifting is done by eksctl/helm/kubectl; this class only decides
    which commands to run and in what order. Optional add-on steps log a warning
    on failure instead of stopping the run.
    """

    def __init__(
        self,
        config: EksSetupConfig,
        *,
        runner: CommandRunner,
        installer: EksctlInstaller,
        show_progress: bool = True,
    ) -> None:
        super().__init__(runner=runner, show_progress=show_progress)
        self._config = config
        self._installer = installer
        self._result = EksSetupResult(config=config)

    def _region_args(self) -> list[str]:
        return ["--region", self._config.region]

    def _steps(self) -> list[ProvisioningStep]:
        cfg = self._config
        steps = [
            ProvisioningStep("Checking required CLIs...", self._check_tools),
        ]
        if cfg.create_kms_key:
            steps.append(ProvisioningStep("Creating KMS key for secrets encryption...", self._setup_kms_key))
        steps += [
            ProvisioningStep(
                "Creating EKS cluster (managed), this will take several minutes...", self._setup_cluster
            ),
        ]
        if cfg.create_kms_key:
            steps.append(ProvisioningStep("Enabling secrets encryption...", self._enable_secrets_encryption))
        steps.append(ProvisioningStep("Creating spot-managed nodegroup...", self._setup_spot_nodegroup))
        if cfg.enable_cloudwatch_logging:
            steps.append(ProvisioningStep("Enabling control plane logs to CloudWatch", self._enable_cloudwatch_logging))
        steps.append(
            ProvisioningStep(
                "Ensuring IAM OIDC provider is associated with cluster (required for IRSA)...", self._associate_oidc
            )
        )
        if cfg.enable_alb:
            steps.append(
                ProvisioningStep("Installing AWS Load Balancer Controller (ALB) via helm", self._install_alb_controller)
            )
        if cfg.enable_autoscaler:
            steps.append(ProvisioningStep("Installing Cluster Autoscaler", self._install_autoscaler))
        steps += [
            ProvisioningStep("Waiting for nodes to be Ready...", self._wait_for_nodes),
            ProvisioningStep("Verifying kube-system pods...", self._verify_system_pods),
        ]
        return steps

    async def setup(self) -> EksSetupResult:
        cfg = self._config
        logger.info("Using AWS region: %s", cfg.region)
        logger.info("Cluster name: %s", cfg.cluster_name)

        await self._run_steps("EKS setup", self._steps())
        logger.info("EKS cluster setup completed (cluster: %s, region: %s).", cfg.cluster_name, cfg.region)

        self._result.created = list(self.created)
        self._result.skipped = list(self.skipped)
        self._result.warnings = list(self.warnings)
        return self._result

    # -----------------
    # Steps
    # -----------------

    async def _check_tools(self) -> None:
        if self._runner.which("eksctl") is None:
            install_dir = self._config.eksctl_install_dir
            await self._installer.install(install_dir)
            self._runner.add_search_path(install_dir)

        self._require_commands("aws", "eksctl", "kubectl", "helm")

    async def _setup_kms_key(self) -> None:
        cfg = self._config
        alias = cfg.kms_alias

        async def exists() -> bool:
            found = await self._probe(
                [
                    "aws",
                    "kms",
                    "describe-key",
                    "--key-id",
                    alias,
                    "--query",
                    "KeyMetadata.Arn",
                    "--output",
                    "text",
                    *self._region_args(),
                ],
                not_found=("NotFoundException",),
            )
            if found is None:
                return False
            self._result.kms_key_arn = found.text()
            return True

        async def create() -> None:
            # A key from a run that failed before create-alias is adopted, not duplicated.
            orphan = await self._find_tagged_kms_key()
            if orphan:
                logger.info("Reusing KMS key %s (alias was missing)", orphan)
                self._result.kms_key_arn = orphan
            else:
                created = await self._runner.run(
                    [
                        "aws",
                        "kms",
                        "create-key",
                        "--description",
                        f"EKS secrets encryption key for {cfg.cluster_name}",
                        "--tags",
                        f"TagKey={KMS_CLUSTER_TAG},TagValue={cfg.cluster_name}",
                        "--query",
                        "KeyMetadata.Arn",
                        "--output",
                        "text",
                        *self._region_args(),
                    ]
                )
                self._result.kms_key_arn = created.text()
            await self._runner.run(
                [
                    "aws",
                    "kms",
                    "create-alias",
                    "--alias-name",
                    alias,
                    "--target-key-id",
                    self._result.kms_key_arn,
                    *self._region_args(),
                ]
            )

        await self._ensure(f"KMS key {alias}", exists=exists, create=create)
        logger.info("KMS key: %s", self._result.kms_key_arn)

    async def _find_tagged_kms_key(self) -> Optional[str]:
        found = await self._runner.run(
            [
                "aws",
                "resourcegroupstaggingapi",
                "get-resources",
                "--resource-type-filters",
                "kms:key",
                "--tag-filters",
                f"Key={KMS_CLUSTER_TAG},Values={self._config.cluster_name}",
                "--query",
                "ResourceTagMappingList[].ResourceARN",
                "--output",
                "json",
                *self._region_args(),
            ]
        )
        arns = found.json() or []
        return arns[0] if arns else None

    def _create_cluster_args(self) -> list[str]:
        cfg = self._config
        args = [
            "eksctl",
            "create",
            "cluster",
            "--name",
            cfg.cluster_name,
            *self._region_args(),
            "--nodegroup-name",
            cfg.ondemand_nodegroup,
            "--node-type",
            cfg.node_type,
            "--nodes",
            str(cfg.ondemand_nodes),
            "--nodes-min",
            str(cfg.ondemand_min),
            "--nodes-max",
            str(cfg.ondemand_max),
            "--managed",
            "--with-oidc",
        ]
        if cfg.eks_version:
            args += ["--version", cfg.eks_version]
        return args

    async def _setup_cluster(self) -> None:
        cfg = self._config

        async def exists() -> bool:
            found = await self._probe(
                ["eksctl", "get", "cluster", *self._region_args(), "--name", cfg.cluster_name],
                not_found=("ResourceNotFoundException", "No cluster found"),
            )
            return found is not None

        async def create() -> None:
            await self._runner.run(self._create_cluster_args(), stream=True)

        await self._ensure(f"Cluster {cfg.cluster_name}", exists=exists, create=create)

    async def _enable_secrets_encryption(self) -> None:
        cfg = self._config
        if not self._result.kms_key_arn:
            return
        await self._optional(
            [
                "eksctl",
                "utils",
                "enable-secrets-encryption",
                "--cluster",
                cfg.cluster_name,
                "--key-arn",
                self._result.kms_key_arn,
                *self._region_args(),
                "--approve",
            ],
            warning="Enabling secrets encryption returned non-zero (it may already be enabled)",
            stream=True,
        )

    async def _setup_spot_nodegroup(self) -> None:
        cfg = self._config

        async def exists() -> bool:
            found = await self._probe(
                [
                    "eksctl",
                    "get",
                    "nodegroup",
                    "--cluster",
                    cfg.cluster_name,
                    *self._region_args(),
                    "--name",
                    cfg.spot_nodegroup,
                ],
                not_found=("ResourceNotFoundException", "not found"),
            )
            return found is not None

        async def create() -> None:
            await self._runner.run(
                [
                    "eksctl",
                    "create",
                    "nodegroup",
                    "--cluster",
                    cfg.cluster_name,
                    *self._region_args(),
                    "--name",
                    cfg.spot_nodegroup,
                    "--node-type",
                    cfg.node_type,
                    "--nodes",
                    str(cfg.spot_nodes),
                    "--nodes-min",
                    str(cfg.spot_min),
                    "--nodes-max",
                    str(cfg.spot_max),
                    "--managed",
                    "--spot",
                ],
                stream=True,
            )

        await self._ensure(f"Spot nodegroup {cfg.spot_nodegroup}", exists=exists, create=create)

    async def _enable_cloudwatch_logging(self) -> None:
        cfg = self._config
        await self._optional(
            [
                "eksctl",
                "utils",
                "update-cluster-logging",
                *self._region_args(),
                "--cluster",
                cfg.cluster_name,
                "--enable-types",
                CONTROL_PLANE_LOG_TYPES,
                "--approve",
            ],
            warning="CloudWatch logging update returned non-zero (may already be configured)",
        )

    async def _associate_oidc(self) -> None:
        await self._optional(
            [
                "eksctl",
                "utils",
                "associate-iam-oidc-provider",
                "--cluster",
                self._config.cluster_name,
                *self._region_args(),
                "--approve",
            ],
            warning="OIDC provider association failed or already present",
        )

    async def _create_service_account(self, *, name: str, policy_arn: str, warning: str) -> None:
        await self._optional(
            [
                "eksctl",
                "create",
                "iamserviceaccount",
                "--cluster",
                self._config.cluster_name,
                *self._region_args(),
                "--namespace",
                "kube-system",
                "--name",
                name,
                "--attach-policy-arn",
                policy_arn,
                "--override-existing-serviceaccounts",
                "--approve",
            ],
            warning=warning,
            stream=True,
        )

    async def _install_alb_controller(self) -> None:
        cfg = self._config
        await self._create_service_account(
            name="aws-load-balancer-controller",
            policy_arn=ALB_CONTROLLER_POLICY_ARN,
            warning="Failed to create IAM service account for ALB (may already exist)",
        )

        # "helm repo add" fails when the repo is already registered.
        await self._optional(["helm", "repo", "add", *EKS_CHARTS_REPO])
        await self._runner.run(["helm", "repo", "update"])
        await self._runner.run(
            [
                "helm",
                "upgrade",
                "--install",
                "aws-load-balancer-controller",
                "eks/aws-load-balancer-controller",
                "--namespace",
                "kube-system",
                "--set",
                f"clusterName={cfg.cluster_name}",
                "--set",
                f"region={cfg.region}",
                "--set",
                "serviceAccount.create=false",
                "--set",
                "serviceAccount.name=aws-load-balancer-controller",
            ],
            stream=True,
        )

    async def _install_autoscaler(self) -> None:
        cfg = self._config
        await self._create_service_account(
            name="cluster-autoscaler",
            policy_arn=AUTOSCALER_POLICY_ARN,
            warning="Failed to create IAM service account for Cluster Autoscaler (may already exist)",
        )
        await self._optional(
            ["kubectl", "apply", "-f", cfg.autoscaler_manifest_url],
            warning="Autoscaler manifest apply may have failed or network issue",
        )
        await self._optional(
            [
                "kubectl",
                "-n",
                "kube-system",
                "set",
                "env",
                "deployment/cluster-autoscaler",
                "--containers=cluster-autoscaler",
                f"--env=AWS_REGION={cfg.region}",
            ]
        )
        await self._optional(
            [
                "kubectl",
                "-n",
                "kube-system",
                "annotate",
                "deployment",
                "cluster-autoscaler",
                "cluster-autoscaler.kubernetes.io/safe-to-evict=false",
                "--overwrite",
            ]
        )

    async def _wait_for_nodes(self) -> None:
        await self._optional(
            ["kubectl", "wait", "--for=condition=Ready", "nodes", "--all", f"--timeout={self._config.node_ready_timeout}"],
            warning="Timeout waiting for nodes; check 'kubectl get nodes'",
        )

    async def _verify_system_pods(self) -> None:
        pods = await self._runner.run(["kubectl", "-n", "kube-system", "get", "pods", "--no-headers"])
        self._result.system_pods = pods.text()
        if self._result.system_pods:
            logger.info("kube-system pods:\n%s", self._result.system_pods)
