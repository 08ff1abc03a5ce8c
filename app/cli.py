"""Command line entry point.

    webapp serve                      # run the web app with uvicorn
    webapp setup-ecs --region us-east-1
    webapp setup-eks --cluster-name my-cluster --kms --node-type t3.medium

Setup commands exit 0 when every resource exists (created now or earlier) and
exit 1 on the first failed step, printing the tool's own error text.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click
import uvicorn

from app.services.command_runner import CommandError
from app.services.config import AppConfig, EcsSetupConfig, EksSetupConfig, ensure_logging
from app.services.dependencies import get_ecs_setup_service, get_eks_setup_service
from app.services.setup.ecs_setup_service import EcsSetupResult
from app.services.setup.eks_setup_service import EksSetupResult
from app.services.setup.provisioning import ProvisioningError

logger = logging.getLogger(__name__)

_ECS_DEFAULTS = EcsSetupConfig()
_EKS_DEFAULTS = EksSetupConfig()


def _fail(exc: Exception) -> None:
    click.secho(f"[ERROR] {exc}", fg="red", err=True)
    raise SystemExit(1)


def _render_summary(created: list[str], skipped: list[str], warnings: list[str]) -> None:
    for item in created:
        click.secho(f"  created  {item}", fg="green")
    for item in skipped:
        click.echo(f"  exists   {item}")
    for item in warnings:
        click.secho(f"  warning  {item}", fg="yellow")


def _render_ecs_result(result: EcsSetupResult) -> None:
    click.echo("")
    click.secho("SETUP COMPLETE!", fg="green", bold=True)
    _render_summary(result.created, result.skipped, result.warnings)
    click.echo("")
    click.secho("GitHub Repository Secrets to Add:", fg="blue")
    for name, value in result.github_secrets().items():
        click.echo(f"{name}: " + click.style(value, fg="yellow"))
    click.echo("")
    click.secho("Next Steps:", fg="blue")
    click.echo("1. Go to your GitHub repository")
    click.echo("2. Navigate to Settings -> Secrets -> Actions")
    click.echo("3. Add each of the above values as repository secrets")
    click.echo("4. Create a .github/workflows/deploy.yml file in your project")
    click.echo("5. Push your code to trigger the first deployment")
    click.echo("6. Watch the GitHub Actions workflow in the Actions tab")
    click.echo("7. Get your app URL from the workflow output or AWS Console")
    click.echo("")
    click.secho("Sample GitHub Actions workflow (.github/workflows/deploy.yml):", fg="blue")
    click.echo(result.deploy_workflow())


def _render_eks_result(result: EksSetupResult) -> None:
    click.echo("")
    click.secho(
        f"EKS cluster setup completed (cluster: {result.config.cluster_name}, region: {result.config.region}).",
        fg="green",
        bold=True,
    )
    _render_summary(result.created, result.skipped, result.warnings)
    if result.kms_key_arn:
        click.echo(f"KMS key: {result.kms_key_arn}")
    click.echo("")
    click.echo(result.next_steps())


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log every command that is run.")
def cli(verbose: bool) -> None:
    """AWS DevOps demo web app and its provisioning scripts."""

    ensure_logging(logging.DEBUG if verbose else logging.INFO)


@cli.command()
@click.option("--host", default=None, help="Bind address (default: $HOST or 0.0.0.0).")
@click.option("--port", type=int, default=None, help="Listen port (default: $PORT or 3001).")
def serve(host: Optional[str], port: Optional[int]) -> None:
    """Run the web app."""

    from app.main import create_app

    config = AppConfig.from_env()
    config = replace(config, host=host or config.host, port=port or config.port)
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level="info")


@cli.command("setup-ecs")
@click.option("--cluster-name", default=_ECS_DEFAULTS.cluster_name, show_default=True)
@click.option("--service-name", default=_ECS_DEFAULTS.service_name, show_default=True)
@click.option("--task-family", default=_ECS_DEFAULTS.task_family, show_default=True)
@click.option("--ecr-repository", default=_ECS_DEFAULTS.ecr_repository, show_default=True)
@click.option("--region", default=_ECS_DEFAULTS.region, show_default=True)
@click.option("--github-user", default=_ECS_DEFAULTS.github_user_name, show_default=True)
@click.option("--container-port", type=int, default=_ECS_DEFAULTS.container_port, show_default=True)
@click.option("--profile", default=None, help="AWS CLI profile to use (default: environment's profile).")
@click.option("--progress/--no-progress", default=True, help="Show a progress bar over the setup steps.")
def setup_ecs(
    cluster_name: str,
    service_name: str,
    task_family: str,
    ecr_repository: str,
    region: str,
    github_user: str,
    container_port: int,
    profile: Optional[str],
    progress: bool,
) -> None:
    """Provision the ECR/ECS/IAM resources for the GitHub Actions deploy pipeline."""

    config = EcsSetupConfig(
        cluster_name=cluster_name,
        service_name=service_name,
        task_family=task_family,
        ecr_repository=ecr_repository,
        region=region,
        github_user_name=github_user,
        container_port=container_port,
        profile=profile,
    )
    service = get_ecs_setup_service(config, show_progress=progress)
    try:
        result = asyncio.run(service.setup())
    except (ProvisioningError, CommandError) as exc:
        _fail(exc)
    else:
        _render_ecs_result(result)


@cli.command("setup-eks")
@click.option("--cluster-name", default=_EKS_DEFAULTS.cluster_name, show_default=True, help="EKS cluster name.")
@click.option("--region", default=_EKS_DEFAULTS.region, show_default=True, help="AWS region.")
@click.option(
    "--node-type", default=_EKS_DEFAULTS.node_type, show_default=True, help="EC2 instance type for node groups."
)
@click.option("--kms", is_flag=True, help="Create a KMS key and enable secrets encryption.")
@click.option("--profile", default=None, help="AWS CLI profile to use (default: environment's profile).")
@click.option("--no-alb", is_flag=True, help="Don't install AWS Load Balancer Controller.")
@click.option("--no-autoscaler", is_flag=True, help="Don't install Cluster Autoscaler.")
@click.option("--no-cloudwatch", is_flag=True, help="Don't enable cluster CloudWatch logging.")
@click.option("--eks-version", default=None, help="Kubernetes version (default: latest supported by eksctl).")
@click.option(
    "--install-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=_EKS_DEFAULTS.eksctl_install_dir,
    show_default=True,
    help="Where to install eksctl if it is missing.",
)
@click.option("--progress/--no-progress", default=True, help="Show progress bars.")
def setup_eks(
    cluster_name: str,
    region: str,
    node_type: str,
    kms: bool,
    profile: Optional[str],
    no_alb: bool,
    no_autoscaler: bool,
    no_cloudwatch: bool,
    eks_version: Optional[str],
    install_dir: Path,
    progress: bool,
) -> None:
    """Provision an EKS cluster with spot capacity, ALB controller and Cluster Autoscaler."""

    config = EksSetupConfig(
        cluster_name=cluster_name,
        region=region,
        node_type=node_type,
        create_kms_key=kms,
        profile=profile,
        enable_alb=not no_alb,
        enable_autoscaler=not no_autoscaler,
        enable_cloudwatch_logging=not no_cloudwatch,
        eks_version=eks_version or None,
        eksctl_install_dir=install_dir,
    )
    service = get_eks_setup_service(config, show_progress=progress)
    try:
        result = asyncio.run(service.setup())
    except (ProvisioningError, CommandError) as exc:
        _fail(exc)
    else:
        _render_eks_result(result)


if __name__ == "__main__":
    cli()
