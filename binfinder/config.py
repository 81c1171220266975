"""Run configuration: one immutable value built at startup and passed down."""
import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Optional

import yaml

from .errors import ConfigError
from .models import OSFamily

SCRIPTS_DIR = str(Path(__file__).resolve().parent / "scripts")

# Routing for release text that only says "linux"
FALLBACK_RHEL = "rhel"
FALLBACK_UNKNOWN = "unknown"
FALLBACK_POLICIES = (FALLBACK_RHEL, FALLBACK_UNKNOWN)

DEFAULT_BASELINE = ("/usr/bin/file",)

# findutils is installed by the alpine sweep script and is not in the image's own db
# https://pkgs.alpinelinux.org/contents?branch=edge&name=findutils&arch=x86&repo=main
DEFAULT_FAMILY_ALLOWLIST = {
    OSFamily.ALPINE.value: (
        "/usr/bin/find",
        "/usr/bin/xargs",
        "/usr/bin/updatedb",
        "/usr/bin/locate",
        "/usr/libexec/frcode",
    ),
}

# busybox ships no os-release and no package manager
DEFAULT_SENTINELS = ("busybox",)


@dataclass(frozen=True)
class Config:
    output_dir: str = "data"
    workers: int = 1
    package_workers: int = 8
    command_timeout: Optional[float] = 600.0
    pull_images: bool = True
    baseline_allowlist: tuple = DEFAULT_BASELINE
    family_allowlist: dict = field(default_factory=lambda: dict(DEFAULT_FAMILY_ALLOWLIST))
    sentinel_images: tuple = DEFAULT_SENTINELS
    tooling_marker: str = "binfinder"
    generic_linux_fallback: str = FALLBACK_RHEL
    registry: str = ""
    user: str = ""
    password: str = ""
    scripts_dir: str = SCRIPTS_DIR

    def __post_init__(self):
        if not isinstance(self.workers, int) or self.workers < 1:
            raise ConfigError(f"workers must be a positive integer, got {self.workers!r}")
        if not isinstance(self.package_workers, int) or self.package_workers < 1:
            raise ConfigError(
                f"package_workers must be a positive integer, got {self.package_workers!r}"
            )
        if self.generic_linux_fallback not in FALLBACK_POLICIES:
            raise ConfigError(
                f"generic_linux_fallback must be one of {', '.join(FALLBACK_POLICIES)}, "
                f"got {self.generic_linux_fallback!r}"
            )
        if self.command_timeout is not None and self.command_timeout < 0:
            raise ConfigError("command_timeout must not be negative")
        if not self.tooling_marker:
            raise ConfigError("tooling_marker must not be empty")

        known = {f.value for f in OSFamily}
        families = {}
        for key, paths in dict(self.family_allowlist or {}).items():
            key = key.value if isinstance(key, OSFamily) else str(key).lower()
            if key not in known:
                raise ConfigError(f"family_allowlist: unknown OS family {key!r}")
            families[key] = tuple(paths or ())
        object.__setattr__(self, "family_allowlist", MappingProxyType(families))
        object.__setattr__(self, "baseline_allowlist", tuple(self.baseline_allowlist or ()))
        object.__setattr__(self, "sentinel_images", tuple(self.sentinel_images or ()))

    @property
    def timeout(self) -> Optional[float]:
        """Per-call timeout in seconds, or None when disabled."""
        return self.command_timeout or None

    def allowlist_for(self, family: OSFamily) -> frozenset:
        return frozenset(self.baseline_allowlist) | frozenset(
            self.family_allowlist.get(family.value, ())
        )

    def replace(self, **overrides) -> "Config":
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "family_allowlist" not in changes:
            changes["family_allowlist"] = dict(self.family_allowlist)
        return dataclasses.replace(self, **changes)


def _substitute_env(raw: str) -> str:
    for key, val in os.environ.items():
        raw = raw.replace(f"${{{key}}}", val)
    return raw


def load_config(config_path: str, base: Optional[Config] = None) -> Config:
    """Load a YAML config file on top of ``base`` (defaults when omitted)."""
    try:
        with open(config_path) as f:
            raw = f.read()
    except OSError as exc:
        raise ConfigError(f"cannot read config {config_path}: {exc}") from exc
    try:
        data = yaml.safe_load(_substitute_env(raw)) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")

    names = {f.name for f in dataclasses.fields(Config)}
    unknown = sorted(set(data) - names)
    if unknown:
        raise ConfigError(f"{config_path}: unknown keys: {', '.join(unknown)}")
    for key in ("baseline_allowlist", "sentinel_images"):
        if key in data and not isinstance(data[key], (list, type(None))):
            raise ConfigError(f"{config_path}: {key} must be a list")
    if "family_allowlist" in data and not isinstance(data["family_allowlist"], (dict, type(None))):
        raise ConfigError(f"{config_path}: family_allowlist must be a mapping")

    base = base or Config()
    try:
        return base.replace(**data)
    except TypeError as exc:
        raise ConfigError(f"{config_path}: {exc}") from exc
