"""Configuration for deploytag.

Settings are read once at start-up from, lowest to highest precedence:

1. Field defaults
2. ``.deploy.yaml`` (or the file given with ``--config``)
3. Keyword arguments passed to ``get_config``
4. ``.deploy.config`` (shared, committed)
5. ``.deploy.config.local`` (personal overrides, gitignored)
6. Environment variables

The two ``.deploy.config`` files use ``KEY=value`` lines, so existing shell
style configuration keeps working.

Example:
    >>> config = get_config()
    >>> config.deploy_branches
    ['master', 'main']
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from deploytag.monitor import MonitorConfig

DEFAULT_YAML_CONFIG = Path(".deploy.yaml")
DOTENV_FILES = (".deploy.config", ".deploy.config.local")


class DeployConfig(BaseSettings):
    """Settings for deployment and rollback.

    Environment Variables:
        SERVICE_NAME: Service name used in tag messages (default: directory name)
        DEFAULT_BRANCH: Main branch of the repository
        DEPLOY_BRANCHES: Branches production may be deployed from (space or comma separated)
        VERSION_PREFIX: Prefix of version tags
        ENABLE_HOTFIX: Allow hotfix deployments
        ENABLE_PREVIEW: Show the plan and ask before mutating
        MONITOR_DEPLOYMENT: Follow the CI run after pushing
        DEPLOY_TYPE: Deployment target kind; ``kubernetes`` syncs through Argo CD
        STAGING_SERVICES: Services that have a staging environment
        GITHUB_REPOSITORY: ``owner/repo`` (default: parsed from the git remote)
        GITHUB_TOKEN: Token for the GitHub REST API
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=DOTENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_name: str = Field(
        default_factory=lambda: Path.cwd().name,
        min_length=1,
        description="Service name used in tag messages",
    )
    default_branch: str = Field(default="master", description="Main branch")
    deploy_branches: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["master", "main"],
        description="Branches production deployments are expected from",
    )
    version_prefix: str = Field(default="v", description="Version tag prefix")
    enable_hotfix: bool = Field(default=True, description="Allow hotfix deployments")
    enable_preview: bool = Field(default=False, description="Confirm the plan before mutating")
    monitor_deployment: bool = Field(default=True, description="Follow the CI run after pushing")
    deploy_type: str = Field(default="kubernetes", description="Deployment target kind")
    argocd_url: str | None = Field(default=None, description="Argo CD UI for the sync hint")
    max_versions_to_show: int = Field(default=20, ge=1, le=200, description="History size")
    staging_services: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Services with a staging environment (rollback allow-list)",
    )
    git_remote: str = Field(default="origin", description="Remote tags are pushed to")

    # CI
    run_provider: Literal["auto", "api", "gh", "none"] = Field(
        default="auto",
        description="How CI runs are queried",
    )
    github_repository: str | None = Field(default=None, description="owner/repo slug")
    github_token: SecretStr | None = Field(default=None, description="GitHub API token")
    github_api_url: str = Field(default="https://api.github.com", description="GitHub API URL")

    # Monitoring
    monitor_discovery_attempts: int = Field(default=10, ge=1)
    monitor_discovery_interval: float = Field(default=2.0, ge=0.0)
    monitor_poll_interval: float = Field(default=5.0, ge=0.0)
    monitor_timeout: float = Field(default=600.0, ge=0.0)
    monitor_max_query_failures: int = Field(default=3, ge=1)

    @field_validator("deploy_branches", "staging_services", mode="before")
    @classmethod
    def split_list(cls, value: Any) -> Any:
        """Accept ``"master main"`` or ``"a,b"`` as well as YAML lists."""
        if isinstance(value, str):
            return [item for item in value.replace(",", " ").split() if item]
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # First source wins: environment, then dotenv files, then YAML/kwargs
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def external_sync(self) -> bool:
        """Whether the target syncs after CI, so success in CI is not yet live."""
        return self.deploy_type.lower() == "kubernetes"

    def monitor_config(self) -> MonitorConfig:
        return MonitorConfig(
            discovery_attempts=self.monitor_discovery_attempts,
            discovery_interval=self.monitor_discovery_interval,
            poll_interval=self.monitor_poll_interval,
            timeout=self.monitor_timeout,
            max_query_failures=self.monitor_max_query_failures,
        )


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary of configuration values, or empty dict if file doesn't exist.

    Raises:
        ValueError: If the file does not contain a mapping.
    """
    if not config_path.exists():
        return {}

    import yaml

    with config_path.open() as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{config_path} must contain a mapping of settings"
        raise ValueError(msg)
    return data


def get_config(
    config_path: Path | None = None,
    project_dir: Path | None = None,
    **overrides: Any,
) -> DeployConfig:
    """Load configuration from YAML, dotenv files and the environment.

    Args:
        config_path: YAML file. Defaults to ``.deploy.yaml`` in ``project_dir``.
        project_dir: Directory holding the configuration files (default: cwd).
        **overrides: Values layered above the YAML file.

    Returns:
        Validated DeployConfig instance.

    Raises:
        pydantic.ValidationError: If a setting is invalid.
        ValueError: If the YAML file is malformed.
    """
    base = project_dir or Path.cwd()
    if config_path is None:
        config_path = base / DEFAULT_YAML_CONFIG

    values = {**load_yaml_config(config_path), **overrides}
    env_files = tuple(base / name for name in DOTENV_FILES)
    return DeployConfig(_env_file=env_files, **values)  # type: ignore[call-arg]


__all__: list[str] = [
    "DEFAULT_YAML_CONFIG",
    "DOTENV_FILES",
    "DeployConfig",
    "get_config",
    "load_yaml_config",
]
