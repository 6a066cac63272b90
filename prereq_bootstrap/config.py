from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_CANONICAL_SERVER = "http://coapp.org/resources/"
DEFAULT_MANIFEST_FILENAME = "bootstrapmanifest.txt"
DEFAULT_MANIFEST_PROPERTY = "BootstrapManifest"
DEFAULT_MAX_ENTRIES = 64
DEFAULT_EXE_PARAMETERS = "/quiet /norestart"
# Interpolated with the configured install root.
DEFAULT_MSI_PARAMETERS = 'TARGETDIR="{install_root}/.installed/" ALLUSERS=1 COAPP_INSTALLED=1 REBOOT=REALLYSUPPRESS'
DEFAULT_LCID = 1033


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"config section '{name}' must be a mapping")
    return value


def _str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if str(v).strip()]


@dataclass(frozen=True)
class BootstrapConfig:
    raw: Dict[str, Any]

    # paths
    @property
    def install_root(self) -> str:
        default = os.path.join(os.environ.get("SystemDrive", os.path.expanduser("~")), "apps")
        return str(_section(self.raw, "paths").get("install_root") or default)

    @property
    def temp_dir(self) -> str:
        return str(_section(self.raw, "paths").get("temp_dir") or tempfile.gettempdir())

    @property
    def bootstrap_dir(self) -> Optional[str]:
        return _section(self.raw, "paths").get("bootstrap_dir")

    @property
    def state_path(self) -> Optional[str]:
        return _section(self.raw, "paths").get("state")

    # servers
    @property
    def manifest_servers(self) -> List[str]:
        return _str_list(_section(self.raw, "servers").get("manifest"))

    @property
    def mirrors(self) -> List[str]:
        return _str_list(_section(self.raw, "servers").get("mirrors"))

    @property
    def canonical_server(self) -> str:
        return str(_section(self.raw, "servers").get("canonical") or DEFAULT_CANONICAL_SERVER)

    @property
    def additional_server(self) -> Optional[str]:
        return _section(self.raw, "servers").get("additional")

    # network
    @property
    def search_online(self) -> bool:
        return bool(_section(self.raw, "network").get("search_online", True))

    @property
    def connect_timeout_s(self) -> float:
        return float(_section(self.raw, "network").get("connect_timeout_s", 6))

    @property
    def receive_timeout_s(self) -> float:
        return float(_section(self.raw, "network").get("receive_timeout_s", 12))

    @property
    def user_agent(self) -> str:
        return str(_section(self.raw, "network").get("user_agent") or "PrereqBootstrap/1.0")

    # trust
    @property
    def trust_roots(self) -> List[str]:
        return _str_list(_section(self.raw, "trust").get("roots"))

    # presence
    @property
    def presence_registry_path(self) -> Optional[str]:
        return _section(self.raw, "presence").get("registry")

    @property
    def force_reinstall_key(self) -> Optional[str]:
        return _section(self.raw, "presence").get("force_reinstall_key")

    # manifest
    @property
    def manifest_filename(self) -> str:
        return str(_section(self.raw, "manifest").get("filename") or DEFAULT_MANIFEST_FILENAME)

    @property
    def manifest_property(self) -> str:
        return str(_section(self.raw, "manifest").get("property") or DEFAULT_MANIFEST_PROPERTY)

    @property
    def max_entries(self) -> int:
        return int(_section(self.raw, "manifest").get("max_entries") or DEFAULT_MAX_ENTRIES)

    @property
    def strict_capacity(self) -> bool:
        return bool(_section(self.raw, "manifest").get("strict_capacity", False))

    @property
    def legacy_encoding(self) -> str:
        return str(_section(self.raw, "manifest").get("legacy_encoding") or "cp1252")

    # install
    @property
    def default_exe_parameters(self) -> str:
        value = _section(self.raw, "install").get("default_exe_parameters")
        return DEFAULT_EXE_PARAMETERS if value is None else str(value)

    @property
    def default_msi_parameters(self) -> str:
        value = _section(self.raw, "install").get("default_msi_parameters")
        return DEFAULT_MSI_PARAMETERS if value is None else str(value)

    @property
    def package_manager_argv(self) -> List[str]:
        return _str_list(_section(self.raw, "install").get("package_manager_argv")) or ["msiexec", "/i", "{path}"]

    @property
    def chained_component(self) -> Optional[str]:
        return _section(self.raw, "install").get("chained_component")

    @property
    def chain_poll_interval_s(self) -> float:
        return float(_section(self.raw, "install").get("chain_poll_interval_s", 0.1))

    # engine
    @property
    def engine_executable(self) -> str:
        return str(_section(self.raw, "engine").get("executable") or "coapp-engine.exe")

    @property
    def activate_args(self) -> List[str]:
        value = _section(self.raw, "engine").get("activate_args")
        return ["--activate"] if value is None else _str_list(value)

    @property
    def launch_args(self) -> List[str]:
        return _str_list(_section(self.raw, "engine").get("launch_args"))

    # locale
    @property
    def locale_id(self) -> Optional[int]:
        value = _section(self.raw, "locale").get("id")
        return None if value is None else int(value)


def load_config(path: Optional[str]) -> BootstrapConfig:
    """Load YAML (or JSON) bootstrap configuration. No path means built-in defaults."""

    if not path:
        return BootstrapConfig(raw={})

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() == ".json":
        raw = json.loads(text) or {}
    else:
        try:
            import yaml  # type: ignore
        except Exception as e:
            raise RuntimeError("PyYAML is required to read bootstrap configuration") from e
        raw = yaml.safe_load(text) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a mapping/object")

    return BootstrapConfig(raw=raw)


def with_overrides(cfg: BootstrapConfig, overrides: Dict[str, Dict[str, Any]]) -> BootstrapConfig:
    """Return a copy of cfg with per-section keys replaced (CLI flags)."""

    raw = {k: (dict(v) if isinstance(v, dict) else v) for k, v in cfg.raw.items()}
    for section, values in overrides.items():
        merged = dict(raw.get(section) or {})
        merged.update({k: v for k, v in values.items() if v is not None})
        raw[section] = merged
    return BootstrapConfig(raw=raw)
