"""Provisioning configuration (Facade subpackage).

This subpackage groups the configuration types used by the setup services.
Import from here to avoid depending on the internal module layout.

    from app.services.config.setup import EcsSetupConfig, EksSetupConfig
"""

from app.services.config.setup.ecs_config import EcsSetupConfig
from app.services.config.setup.eks_config import EksSetupConfig

__all__ = ["EcsSetupConfig", "EksSetupConfig"]
