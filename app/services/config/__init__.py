"""Configuration package (Facade).

The web app and the setup commands read their settings through this package
rather than through the module that defines each config object (for example,
``database_config.py`` or ``setup/eks_config.py``):

	from app.services.config import AppConfig, EksSetupConfig

- Runtime settings (`AppConfig`, `DatabaseConfig`) come from the environment.
- Provisioning settings (`EcsSetupConfig`, `EksSetupConfig`) come from CLI options.
- `ensure_logging` is the single place the log format is defined.
"""

from app.services.config.app_config import AppConfig
from app.services.config.database_config import DatabaseConfig
from app.services.config.logging_config import ensure_logging
from app.services.config.setup import EcsSetupConfig, EksSetupConfig

__all__ = ["AppConfig", "DatabaseConfig", "EcsSetupConfig", "EksSetupConfig", "ensure_logging"]
