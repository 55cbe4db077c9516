"""Configuration handling for release-keeper"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import urlparse


@dataclass
class AssetRule:
    """A runtime asset staged next to a freshly built executable.

    ``source`` is relative to the repository, ``target`` relative to the
    install directory (or its parent when ``to_parent`` is set).
    """

    source: str
    target: str
    to_parent: bool = False
    optional: bool = False


def default_assets() -> List[AssetRule]:
    return [
        AssetRule("tools", "tools"),
        AssetRule("config/Settings.json", "config/Settings.json"),
        AssetRule("config/koolo.yaml.dist", "config/koolo.yaml"),
        AssetRule("config/template", "config/template"),
        AssetRule("assets", "assets", to_parent=True),
        AssetRule("README.md", "README.md", optional=True),
    ]


def parse_repo_slug(remote_url: str) -> str:
    """Extract ``owner/repo`` from an SSH or HTTPS remote URL.

    Returns an empty string for URLs that do not name a hosted repository
    (for example a local path).
    """
    url = remote_url.strip()
    if url.startswith("git@"):
        # SSH URL format (git@github.com:org/repo.git)
        path = url.split(":", 1)[1] if ":" in url else ""
    else:
        parsed_url = urlparse(url)
        if not parsed_url.scheme or not parsed_url.netloc:
            return ""
        path = parsed_url.path.strip("/")

    if path.endswith(".git"):
        path = path[:-4]
    if path.count("/") != 1:
        return ""
    return path


@dataclass
class Config:
    """Configuration for release-keeper with validation."""

    # Source tree
    clone_url: str = "https://github.com/Diobyte/Koolo-DiobyteVersion.git"
    upstream_url: str = "https://github.com/kwader2k/koolo.git"
    upstream_remote: str = "upstream"
    upstream_branch: str = "main"
    source_dir_name: str = ".keeper-src"
    stash_label: str = "release-keeper"

    # Installation layout
    backup_dir_name: str = "old_versions"
    ledger_filename: str = "applied_prs.json"
    executable_suffix: str = ".exe"
    max_backups: int = 20

    # Relaunch
    service_port: int = 8087
    port_wait_seconds: int = 60
    restart_delay: float = 2.0

    # GitHub integration
    github_token: Optional[str] = None
    api_timeout: int = 15

    # Build pipeline
    compiler: str = "go"
    obfuscator: str = "garble"
    build_package: str = "./cmd/koolo"
    build_tags: str = "static"
    windowed: bool = True
    obfuscation_scope: str = (
        "github.com/hectorgimenez/koolo/*,"
        "!github.com/hectorgimenez/koolo/internal/server*,"
        "!github.com/hectorgimenez/koolo/internal/event*,"
        "!github.com/inkeliz/gowebview*"
    )
    version_variable_prefix: str = "github.com/hectorgimenez/koolo/internal/updater"
    extra_ldflags: str = "-X 'github.com/hectorgimenez/koolo/internal/config.Version=dev'"
    assets: List[AssetRule] = field(default_factory=default_assets)

    # Output
    verbose: bool = False
    debug: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_urls()
        self._validate_names()
        self._validate_max_backups()
        self._validate_port()
        self._validate_api_timeout()
        self._validate_assets()
        if not self.github_token:
            self.github_token = os.environ.get("GITHUB_TOKEN") or None

    def _validate_urls(self):
        """Validate clone and upstream URLs are not empty."""
        for name in ("clone_url", "upstream_url"):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"{name} cannot be empty")
            setattr(self, name, value.strip())

    def _validate_names(self):
        """Validate names used as refs and directory names."""
        for name in ("upstream_remote", "upstream_branch", "source_dir_name", "backup_dir_name",
                     "ledger_filename", "stash_label"):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"{name} cannot be empty")
            setattr(self, name, value.strip())
        for name in ("source_dir_name", "backup_dir_name", "ledger_filename"):
            if os.sep in getattr(self, name) or "/" in getattr(self, name):
                raise ValueError(f"{name} must be a plain name, got '{getattr(self, name)}'")

    def _validate_max_backups(self):
        """Validate max_backups is positive."""
        if self.max_backups <= 0:
            raise ValueError(f"max_backups must be positive, got {self.max_backups}")

    def _validate_port(self):
        """Validate service_port is a TCP port."""
        if not 0 < self.service_port < 65536:
            raise ValueError(f"service_port must be between 1 and 65535, got {self.service_port}")
        if self.port_wait_seconds < 0:
            raise ValueError(f"port_wait_seconds cannot be negative, got {self.port_wait_seconds}")

    def _validate_api_timeout(self):
        """Validate api_timeout is positive."""
        if self.api_timeout <= 0:
            raise ValueError(f"api_timeout must be positive, got {self.api_timeout}")

    def _validate_assets(self):
        """Accept asset rules given as plain dictionaries."""
        self.assets = [
            rule if isinstance(rule, AssetRule) else AssetRule(**rule)
            for rule in self.assets
        ]

    @property
    def upstream_slug(self) -> str:
        """``owner/repo`` of the upstream repository, empty when not hosted."""
        return parse_repo_slug(self.upstream_url)

    @property
    def upstream_ref(self) -> str:
        """Remote-tracking ref of the upstream mainline, e.g. ``upstream/main``."""
        return f"{self.upstream_remote}/{self.upstream_branch}"

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "assets":
                value = [vars(rule).copy() for rule in value]
            result[f.name] = value
        return result

    def get(self, key: str, default=None):
        """Get config value by key."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "Config":
        """Create Config from dictionary."""
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in config_dict.items() if k in known_fields}
        return cls(**filtered)


def load_config(path: Optional[Union[str, Path]] = None, **overrides) -> Config:
    """Load configuration from a JSON file, applying keyword overrides.

    Args:
        path: Path to ``release-keeper.json``. When None, the file is looked up
            in the current working directory and silently skipped if absent.
        **overrides: Values that take precedence over the file.

    Returns:
        Validated Config
    """
    data: dict = {}
    if path is None:
        candidate = Path.cwd() / "release-keeper.json"
        if candidate.is_file():
            path = candidate
    if path is not None:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")

    data.update({k: v for k, v in overrides.items() if v is not None})
    return Config.from_dict(data)
