"""
Configuration management for y10k.

This module provides Pydantic models for configuration validation and
YAML-based configuration loading with include support. Every repository
remembers the file and line it was declared on so that validation errors
can point the user at the offending stanza.
"""

import os
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from y10k.core.errors import ConfigError

# Repository IDs name directories under the mirror and cache roots
REPO_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:-]*$")


class ProxyConfig(BaseModel):
    """HTTP proxy configuration."""

    http_proxy: Optional[str] = None
    https_proxy: Optional[str] = None
    no_proxy: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class SSLConfig(BaseModel):
    """SSL/TLS configuration for HTTPS connections."""

    # Path to CA bundle file (PEM format)
    ca_bundle: Optional[str] = None

    # Inline CA certificates (PEM format, multiple certs separated by newlines)
    ca_cert: Optional[str] = None

    # Disable SSL verification (not recommended for production)
    verify: bool = True

    # Client certificate for mTLS
    client_cert: Optional[str] = None
    client_key: Optional[str] = None


class AuthConfig(BaseModel):
    """Repository authentication configuration."""

    type: str  # client_cert, basic, bearer, custom

    # Client certificate authentication (RHEL CDN)
    cert_file: Optional[str] = None
    key_file: Optional[str] = None

    # HTTP Basic authentication
    username: Optional[str] = None
    password: Optional[str] = None

    # Bearer token authentication
    token: Optional[str] = None

    # Custom HTTP headers
    headers: Optional[Dict[str, str]] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        """Validate authentication type."""
        valid_types = ["client_cert", "basic", "bearer", "custom"]
        if v not in valid_types:
            raise ValueError(f"Invalid auth type: {v}. Must be one of {valid_types}")
        return v


def _to_utc_datetime(v: Any) -> Any:
    """Coerce YAML dates and ISO strings to timezone-aware UTC datetimes."""
    if v is None or v == "":
        return None
    if isinstance(v, str):
        v = datetime.fromisoformat(v)
    elif isinstance(v, date) and not isinstance(v, datetime):
        v = datetime(v.year, v.month, v.day)
    if isinstance(v, datetime) and v.tzinfo is None:
        v = v.replace(tzinfo=timezone.utc)
    return v


class RepositoryConfig(BaseModel):
    """Upstream repository to mirror, with its filter rules.

    Immutable once validated; a sync never changes its repository config.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    enabled: bool = True

    # Upstream location (at least one required)
    baseurl: Optional[str] = None
    mirrorlist: Optional[str] = None

    # Signature checking
    gpgcheck: bool = False
    gpgkey: Optional[str] = None  # path, file:// or http(s):// URL, or armored key

    # Filter rules
    architecture: Optional[str] = None
    include_sources: bool = False
    newest_only: bool = False
    min_date: Optional[datetime] = None
    max_date: Optional[datetime] = None
    include_packages: Optional[List[str]] = None
    exclude_packages: Optional[List[str]] = None

    # Local state
    delete_removed: bool = False
    local_path: Optional[str] = None  # Defaults to ./{id}
    cache_path: Optional[str] = None  # Overrides storage.cache_path

    # Transport overrides
    auth: Optional[AuthConfig] = None
    proxy: Optional[ProxyConfig] = None
    ssl: Optional[SSLConfig] = None

    # Where this repository was declared (for diagnostics)
    source_file: Optional[str] = None
    source_line: Optional[int] = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Reject empty IDs and IDs that are not plain directory names."""
        v = v.strip()
        if not v:
            raise ValueError("Upstream repository has no ID specified")
        if not REPO_ID_PATTERN.match(v):
            raise ValueError(
                f"Invalid repository ID '{v}': must start with a letter or digit and "
                "contain only letters, digits, '.', '_', ':' and '-'"
            )
        return v

    @field_validator("min_date", "max_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        """Accept YAML dates and ISO strings; naive values are taken as UTC."""
        return _to_utc_datetime(v)

    @field_validator("include_packages", "exclude_packages")
    @classmethod
    def validate_patterns(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """Validate regex patterns."""
        if v is not None:
            for pattern in v:
                try:
                    re.compile(pattern)
                except re.error as e:
                    raise ValueError(f"Invalid regex pattern '{pattern}': {e}")
        return v

    @model_validator(mode="after")
    def validate_upstream(self) -> "RepositoryConfig":
        """Check cross-field constraints."""
        if not self.baseurl and not self.mirrorlist:
            raise ValueError(
                f"Upstream repository for '{self.id}' has no mirror list or base URL"
            )
        if self.gpgcheck and not self.gpgkey:
            raise ValueError(f"Repository '{self.id}': gpgcheck is enabled but no gpgkey is set")
        if self.min_date and self.max_date and self.min_date > self.max_date:
            raise ValueError(f"Repository '{self.id}': min_date is after max_date")
        return self

    @property
    def display_name(self) -> str:
        """Get display name (use name if set, otherwise id)."""
        return self.name or self.id

    @property
    def source(self) -> str:
        """Human readable declaration site, e.g. ``config.yaml:12``."""
        if self.source_file and self.source_line:
            return f"{self.source_file}:{self.source_line}"
        return self.source_file or "<unknown>"

    def get_local_path(self, base_path: Path | str = ".") -> Path:
        """Get the package directory for this repository."""
        path = Path(self.local_path) if self.local_path else Path(self.id)
        if not path.is_absolute():
            path = Path(base_path) / path
        return path

    def __str__(self) -> str:
        return self.id


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    cache_path: str = "/var/cache/y10k"
    base_path: str = "."  # Relative local_path values are resolved against this

    def get_cache_path(self, repo: Optional[RepositoryConfig] = None) -> Path:
        """Get the metadata cache root, honoring a per-repository override."""
        if repo is not None and repo.cache_path:
            return Path(repo.cache_path)
        return Path(self.cache_path)


class DownloadConfig(BaseModel):
    """Download configuration for file downloads."""

    parallel: int = 4  # Concurrent package downloads
    timeout: int = 300  # Download timeout in seconds
    retry_attempts: int = 3  # Number of retry attempts on failure

    @field_validator("parallel")
    @classmethod
    def validate_parallel(cls, v: int) -> int:
        """Validate parallel download count."""
        if v < 1:
            raise ValueError("parallel must be at least 1")
        if v > 100:
            raise ValueError("parallel cannot exceed 100")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate timeout value."""
        if v < 1:
            raise ValueError("timeout must be at least 1 second")
        return v

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        """Validate retry attempts."""
        if v < 0:
            raise ValueError("retry_attempts cannot be negative")
        if v > 10:
            raise ValueError("retry_attempts cannot exceed 10")
        return v


class GlobalConfig(BaseModel):
    """Global y10k configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    proxy: Optional[ProxyConfig] = None
    ssl: Optional[SSLConfig] = None
    repositories: List[RepositoryConfig] = Field(default_factory=list)

    # Include pattern for additional config files
    include: Optional[str] = None

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "GlobalConfig":
        """Reject duplicate repository IDs."""
        seen: Dict[str, RepositoryConfig] = {}
        for repo in self.repositories:
            if repo.id in seen:
                raise ValueError(
                    f"Duplicate repository ID '{repo.id}' "
                    f"(declared at {seen[repo.id].source} and {repo.source})"
                )
            seen[repo.id] = repo
        return self

    def get_repository(self, repo_id: str) -> Optional[RepositoryConfig]:
        """Get repository configuration by ID."""
        for repo in self.repositories:
            if repo.id == repo_id:
                return repo
        return None

    def get_enabled_repositories(self) -> List[RepositoryConfig]:
        """Get all enabled repositories."""
        return [repo for repo in self.repositories if repo.enabled]


def _repository_lines(text: str) -> List[int]:
    """Return the 1-based line of each entry of the top-level repositories list."""
    try:
        root = yaml.compose(text)
    except yaml.YAMLError:
        return []
    if not isinstance(root, yaml.MappingNode):
        return []
    for key_node, value_node in root.value:
        if key_node.value == "repositories" and isinstance(value_node, yaml.SequenceNode):
            return [item.start_mark.line + 1 for item in value_node.value]
    return []


class ConfigLoader:
    """Configuration file loader with include support."""

    def __init__(self, config_path: Path):
        """Initialize config loader.

        Args:
            config_path: Path to main configuration file
        """
        self.config_path = config_path

    def load(self) -> GlobalConfig:
        """Load configuration from YAML file.

        Returns:
            GlobalConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        config_data, repositories = self._load_file(self.config_path)

        # Handle includes
        if config_data.get("include"):
            for include_file in self._resolve_includes(config_data["include"]):
                _, included = self._load_file(include_file)
                repositories.extend(included)

        config_data["repositories"] = repositories

        try:
            return GlobalConfig(**config_data)
        except ValidationError as e:
            raise ConfigError(f"Configuration validation error:\n{e}", str(self.config_path))

    def _load_file(self, path: Path) -> tuple[Dict[str, Any], List[RepositoryConfig]]:
        """Parse one YAML file and validate the repositories it declares."""
        text = path.read_text()
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML syntax error:\n{e}", str(path))

        if not isinstance(data, dict):
            raise ConfigError("Top level of configuration must be a mapping", str(path))

        raw_repos = data.pop("repositories", None) or []
        lines = _repository_lines(text)

        repositories = []
        for index, raw in enumerate(raw_repos):
            line = lines[index] if index < len(lines) else None
            if not isinstance(raw, dict):
                raise ConfigError("Repository entry must be a mapping", str(path), line)
            try:
                repositories.append(
                    RepositoryConfig(**{**raw, "source_file": str(path), "source_line": line})
                )
            except ValidationError as e:
                messages = "; ".join(err["msg"].removeprefix("Value error, ") for err in e.errors())
                raise ConfigError(messages, str(path), line)

        return data, repositories

    def _resolve_includes(self, include_pattern: str) -> List[Path]:
        """Resolve an include glob relative to the main config directory."""
        config_dir = self.config_path.parent
        return [
            p
            for p in sorted(config_dir.glob(include_pattern))
            if p.is_file() and p.suffix in (".yaml", ".yml")
        ]


def load_config(config_path: Optional[Path] = None) -> GlobalConfig:
    """Load configuration from file.

    Priority:
    1. Explicit config_path parameter (--config CLI flag)
    2. Y10K_CONFIG environment variable
    3. Default locations (/etc/y10k/config.yaml, ~/.config/y10k/config.yaml, ./config.yaml)

    Args:
        config_path: Path to config file. If None, tries Y10K_CONFIG env or default locations.

    Returns:
        GlobalConfig instance

    Raises:
        FileNotFoundError: If an explicitly requested config file does not exist
        ConfigError: If the configuration is invalid
    """
    default_paths = [
        Path("/etc/y10k/config.yaml"),
        Path.home() / ".config" / "y10k" / "config.yaml",
        Path("config.yaml"),
    ]

    if config_path:
        paths_to_try = [config_path]
    elif os.environ.get("Y10K_CONFIG"):
        paths_to_try = [Path(os.environ["Y10K_CONFIG"])]
    else:
        paths_to_try = default_paths

    for path in paths_to_try:
        if path.exists():
            return ConfigLoader(path).load()

    if config_path:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    elif os.environ.get("Y10K_CONFIG"):
        raise FileNotFoundError(
            f"Configuration file not found: {os.environ['Y10K_CONFIG']} (from Y10K_CONFIG)"
        )
    else:
        return GlobalConfig()
