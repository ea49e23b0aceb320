"""
Core functionality for y10k.

This package provides configuration management, the metadata cache root,
downloads, checksums and output handling shared by repository plugins.
"""

from y10k.core.config import (
    AuthConfig,
    ConfigLoader,
    DownloadConfig,
    GlobalConfig,
    ProxyConfig,
    RepositoryConfig,
    SSLConfig,
    StorageConfig,
    load_config,
)
from y10k.core.errors import (
    ConfigError,
    KeyringError,
    MetadataError,
    SyncError,
    TransportError,
    VerificationError,
    Y10kError,
)

__all__ = [
    "AuthConfig",
    "ConfigError",
    "ConfigLoader",
    "DownloadConfig",
    "GlobalConfig",
    "KeyringError",
    "MetadataError",
    "ProxyConfig",
    "RepositoryConfig",
    "SSLConfig",
    "StorageConfig",
    "SyncError",
    "TransportError",
    "VerificationError",
    "Y10kError",
    "load_config",
]
