# src/config.py
"""
Ben-Or Simulator Configuration - Environment-based settings for node clusters
Values come from the process environment, optionally seeded from a .env file.
"""

import os
import logging.config
from typing import Optional
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


class Settings:
    """Simulator settings loaded from environment variables"""

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[str] = os.getenv("LOG_FILE") or None
    LOG_MAX_SIZE_MB: int = int(os.getenv("LOG_MAX_SIZE_MB", "20"))

    # ==========================================================================
    # Node Network Settings
    # ==========================================================================
    NODE_HOST: str = os.getenv("NODE_HOST", "127.0.0.1")
    BASE_NODE_PORT: int = int(os.getenv("BASE_NODE_PORT", "3000"))

    # ==========================================================================
    # Consensus Defaults
    # ==========================================================================
    CLUSTER_SIZE: int = int(os.getenv("CLUSTER_SIZE", "4"))
    FAULT_TOLERANCE: int = int(os.getenv("FAULT_TOLERANCE", "1"))

    # ==========================================================================
    # Transport Timing
    # ==========================================================================
    BROADCAST_TIMEOUT: float = float(os.getenv("BROADCAST_TIMEOUT", "5.0"))
    READY_POLL_INTERVAL: float = float(os.getenv("READY_POLL_INTERVAL", "0.005"))

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def is_testing(self) -> bool:
        return self.ENVIRONMENT.lower() == "testing"

    def node_url(self, node_id: int, base_port: Optional[int] = None, host: Optional[str] = None) -> str:
        """Base URL of the HTTP node with the given id"""
        port = (self.BASE_NODE_PORT if base_port is None else base_port) + node_id
        return f"http://{host or self.NODE_HOST}:{port}"

    def get_log_config(self) -> dict:
        """Get logging configuration for logging.config.dictConfig"""
        handlers = {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout"
            }
        }
        if self.LOG_FILE:
            handlers["file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "default",
                "filename": self.LOG_FILE,
                "maxBytes": self.LOG_MAX_SIZE_MB * 1024 * 1024,
                "backupCount": 5
            }

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                }
            },
            "handlers": handlers,
            "loggers": {
                "benor": {
                    "level": self.LOG_LEVEL,
                    "handlers": list(handlers),
                    "propagate": False
                }
            }
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the simulator logging configuration"""
    config = get_settings().get_log_config()
    if level:
        config["loggers"]["benor"]["level"] = level.upper()
    logging.config.dictConfig(config)


# Global settings instance
settings = get_settings()
