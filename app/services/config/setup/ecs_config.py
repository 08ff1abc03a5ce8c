from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class EcsSetupConfig:
    """Names and sizing for the ECS Fargate CI/CD stack.

    This is provisioning input (resource names, region, port), filled from CLI
    options rather than the environment.
    """

    cluster_name: str = "webapp-cicd-cluster"
    service_name: str = "webapp-cicd-service"
    task_family: str = "webapp-cicd-task"
    ecr_repository: str = "my-webapp"
    region: str = "us-east-1"
    github_user_name: str = "github-actions-user"
    container_port: int = 3001
    security_group_name: str = "webapp-cicd-sg"
    container_name: str = "webapp"
    placeholder_image: str = "nginx:alpine"
    task_cpu: str = "256"
    task_memory: str = "512"
    profile: Optional[str] = None

    @property
    def execution_role_name(self) -> str:
        return f"ecsTaskExecutionRole-{self.cluster_name}"

    @property
    def log_group_name(self) -> str:
        return f"/ecs/{self.task_family}"
