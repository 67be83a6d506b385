from __future__ import annotations

import os
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .contracts import ProviderBinding, Role, Workflow
from .errors import ConfigError, WorkflowNotFound
from .pipeline import PipelinePreset

DEFAULT_CONFIG_PATH = "roundwise.yaml"


class StreamingConfig(BaseModel):
    """Incremental output settings."""

    enabled: bool = True
    interval_ms: int = Field(default=30, ge=1)


class RoundwiseConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    streaming: StreamingConfig = StreamingConfig()
    providers: List[ProviderBinding] = Field(default_factory=list)
    roles: List[Role] = Field(default_factory=list)
    workflows: List[Workflow] = Field(default_factory=list)
    pipelines: List[PipelinePreset] = Field(default_factory=list)


class Library:
    """Name-based lookups over a loaded configuration."""

    def __init__(self, config: RoundwiseConfig) -> None:
        self.config = config
        self.roles: Dict[str, Role] = {r.name: r for r in config.roles}
        self.providers: Dict[str, ProviderBinding] = {p.id: p for p in config.providers}
        self._workflows: Dict[str, Workflow] = {w.name: w for w in config.workflows}
        self._pipelines: Dict[str, PipelinePreset] = {p.name: p for p in config.pipelines}

    def role(self, name: str) -> Optional[Role]:
        return self.roles.get(name)

    def provider(self, provider_id: str) -> Optional[ProviderBinding]:
        return self.providers.get(provider_id)

    def workflow(self, name: str) -> Workflow:
        try:
            return self._workflows[name]
        except KeyError:
            raise WorkflowNotFound(f"Workflow not found: {name}") from None

    def pipeline(self, name: str) -> PipelinePreset:
        try:
            return self._pipelines[name]
        except KeyError:
            raise WorkflowNotFound(f"Pipeline preset not found: {name}") from None

    def workflow_names(self) -> List[str]:
        return list(self._workflows)

    def pipeline_names(self) -> List[str]:
        return list(self._pipelines)


def load_config(path: Optional[str] = None) -> RoundwiseConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to ROUNDWISE_CONFIG env
            variable or 'roundwise.yaml' in the current directory.

    Raises:
        ConfigError: If the file exists but is not valid YAML or does not
            match the configuration schema.
    """

    config_path = path or os.getenv("ROUNDWISE_CONFIG", DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            config = RoundwiseConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e
    else:
        config = RoundwiseConfig()

    env_db_url = os.getenv("ROUNDWISE_DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
