import uvicorn

from app.main import app
from app.services.config import AppConfig

if __name__ == "__main__":
    config = AppConfig.from_env()
    uvicorn.run(app, host=config.host, port=config.port)
