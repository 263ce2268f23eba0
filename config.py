"""Delivery API server settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from delivery.config import AppConfig, load_env


@dataclass
class ServerConfig:
    """HTTP server settings plus the shared order-core configuration."""

    host: str
    port: int
    debug: bool
    rate_limit: int
    rate_limit_window_seconds: int
    app: AppConfig
    project_root: Path

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @classmethod
    def load(cls) -> "ServerConfig":
        """Read `.env` (if any) and the environment; make sure the data directory exists."""

        project_root = Path(__file__).resolve().parent
        load_dotenv(project_root / ".env")

        config = cls(
            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "5000")),
            debug=os.environ.get("FLASK_DEBUG", "0") == "1",
            rate_limit=int(os.environ.get("RATE_LIMIT", "100")),
            rate_limit_window_seconds=int(os.environ.get("RATE_LIMIT_WINDOW", str(15 * 60))),
            app=load_env(),
            project_root=project_root,
        )
        config.data_dir.mkdir(parents=True, exist_ok=True)
        return config
