from __future__ import annotations

import logging
from datetime import datetime
from html import escape
from string import Template

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from app.services.config import AppConfig
from app.services.dependencies import get_app_config, get_system_service
from app.services.system_service import SystemService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pages"])

APP_TITLE = "🚀 My AWS DevOps Web App"

_HOME_TEMPLATE = Template(
    """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>$title</title>
  <style>
    body { font-family: Arial, sans-serif; line-height: 1.6; margin: 0; padding: 20px; background-color: #f4f4f4; color: #333; }
    .container { max-width: 800px; margin: 0 auto; background: white; padding: 20px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
    h1 { color: #2c3e50; }
    .info-box { background: #f8f9fa; border-left: 4px solid #3498db; padding: 15px; margin: 20px 0; }
  </style>
</head>
<body>
  <div class="container">
    <h1>$title</h1>
    <p>This app was deployed automatically to AWS!</p>

    <div class="info-box">
      <p><strong>Environment:</strong> $environment</p>
      <p><strong>Current time:</strong> $current_time</p>
      <p><strong>Container ID:</strong> $hostname</p>
      <p><strong>Server uptime:</strong> $uptime seconds</p>
      <p><strong>Platform:</strong> $platform $architecture</p>
    </div>

    <h2>Endpoints:</h2>
    <ul>
      <li><a href="/health">Health Check</a></li>
      <li><a href="/api/info">API Info</a></li>
      <li><a href="/api/system">System Info</a></li>
      <li><a href="/db-check">Database Check</a></li>
    </ul>
  </div>
</body>
</html>
"""
)


def render_home_page(*, config: AppConfig, system: SystemService) -> str:
    return _HOME_TEMPLATE.substitute(
        title=APP_TITLE,
        environment=escape(config.environment),
        current_time=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        hostname=escape(system.hostname()),
        uptime=int(system.process_uptime()),
        platform=escape(system.platform_name()),
        architecture=escape(system.architecture()),
    )


@router.get("/", response_class=HTMLResponse)
async def home(
    config: AppConfig = Depends(get_app_config),
    system: SystemService = Depends(get_system_service),
) -> Response:
    try:
        return HTMLResponse(render_home_page(config=config, system=system))
    except Exception:
        logger.exception("Error rendering homepage")
        return PlainTextResponse("Internal Server Error", status_code=500)
