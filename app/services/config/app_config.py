from __future__ import annotations

import os
from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class AppConfig:
    """Runtime configuration for the web app (read from the process environment)."""

    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 3001
    app_name: ClassVar[str] = "my-aws-webapp"
    app_version: ClassVar[str] = "1.0.0"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @staticmethod
    def from_env() -> "AppConfig":
        environment = os.getenv("ENVIRONMENT") or "development"
        host = os.getenv("HOST") or "0.0.0.0"

        port_raw = os.getenv("PORT")
        port = 3001
        if port_raw:
            try:
                port = int(port_raw)
            except ValueError as exc:
                raise ValueError("Invalid PORT; must be an integer") from exc
            if not 0 < port < 65536:
                raise ValueError(f"Invalid PORT; out of range (got {port})")

        return AppConfig(environment=environment, host=host, port=port)
