from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class EksSetupConfig:
    """Cluster shape and add-on toggles for the EKS provisioning run."""

    cluster_name: str = "my-webapp-cluster"
    region: str = "us-east-1"
    node_type: str = "t3.medium"
    ondemand_nodegroup: str = "ng-ondemand"
    ondemand_nodes: int = 2
    ondemand_min: int = 1
    ondemand_max: int = 4
    spot_nodegroup: str = "ng-spot"
    spot_nodes: int = 2
    spot_min: int = 0
    spot_max: int = 4
    create_kms_key: bool = False
    profile: Optional[str] = None
    enable_alb: bool = True
    enable_autoscaler: bool = True
    enable_cloudwatch_logging: bool = True
    # Empty means the latest version supported by eksctl.
    eks_version: Optional[str] = None
    eksctl_install_dir: Path = Path.home() / ".local" / "bin"
    node_ready_timeout: str = "600s"
    autoscaler_manifest_url: str = (
        "https://raw.githubusercontent.com/kubernetes/autoscaler/"
        "cluster-autoscaler-1.26.0/examples/cluster-autoscaler-autodiscover.yaml"
    )

    @property
    def kms_alias(self) -> str:
        return f"alias/eks-{self.cluster_name}-secrets"
