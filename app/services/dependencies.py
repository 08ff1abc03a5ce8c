from __future__ import annotations

from fastapi import FastAPI, Request

from app.services.command_runner import CommandRunner
from app.services.config import AppConfig, EcsSetupConfig, EksSetupConfig
from app.services.database_service import DatabaseService
from app.services.setup.aws_identity_service import AwsIdentityService
from app.services.setup.ecs_setup_service import EcsSetupService
from app.services.setup.eks_setup_service import EksSetupService
from app.services.setup.eksctl_installer import EksctlInstaller
from app.services.system_service import SystemService


def get_app_config_from_app(app: FastAPI) -> AppConfig:
    config = getattr(app.state, "config", None)
    if config is None:
        raise RuntimeError("App config not initialized (app.state.config)")
    if not isinstance(config, AppConfig):
        raise RuntimeError("Unexpected config type")
    return config


def get_app_config(request: Request) -> AppConfig:
    """FastAPI dependency provider for the app configuration."""

    return get_app_config_from_app(request.app)


def get_system_service() -> SystemService:
    return SystemService()


def get_database_service_from_app(app: FastAPI) -> DatabaseService:
    db = getattr(app.state, "database", None)
    if db is None:
        raise RuntimeError("Database service not initialized (app.state.database)")
    if not isinstance(db, DatabaseService):
        raise RuntimeError("Unexpected database service type")
    return db


def get_database_service(request: Request) -> DatabaseService:
    return get_database_service_from_app(request.app)


def get_ecs_setup_service(config: EcsSetupConfig, *, show_progress: bool = True) -> EcsSetupService:
    """Provider for the CLI (non-request context)."""

    return EcsSetupService(
        config,
        runner=CommandRunner(profile=config.profile),
        identity=AwsIdentityService(profile=config.profile),
        show_progress=show_progress,
    )


def get_eks_setup_service(config: EksSetupConfig, *, show_progress: bool = True) -> EksSetupService:
    """Provider for the CLI (non-request context)."""

    return EksSetupService(
        config,
        runner=CommandRunner(profile=config.profile),
        installer=EksctlInstaller(show_progress=show_progress),
        show_progress=show_progress,
    )
