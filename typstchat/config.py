from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_CONTINUATION_MAX_TOKENS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
)


class ModelConfig(BaseModel):
    """Language model backend settings."""

    name: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    continuation_max_tokens: int = DEFAULT_CONTINUATION_MAX_TOKENS


class RendererConfig(BaseModel):
    """Document renderer settings."""

    backend: Literal["typst"] = "typst"
    binary: str = "typst"
    temp_dir: Optional[str] = None
    timeout: float = 60.0


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 3000


class TypstChatConfig(BaseModel):
    """Top-level configuration model."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    renderer: RendererConfig = Field(default_factory=RendererConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> TypstChatConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TYPSTCHAT_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("TYPSTCHAT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = TypstChatConfig(**data)
    else:
        config = TypstChatConfig()

    env_db_url = os.getenv("TYPSTCHAT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_model = os.getenv("TYPSTCHAT_MODEL")
    if env_model:
        config.model.name = env_model
    env_binary = os.getenv("TYPSTCHAT_TYPST_BINARY")
    if env_binary:
        config.renderer.binary = env_binary
    env_port = os.getenv("PORT")
    if env_port:
        config.server.port = int(env_port)
    return config
