from .step_10_load_manifest import LoadManifestStep
from .step_20_resolve_entries import ResolveEntriesStep
from .step_30_install_entries import InstallEntriesStep
from .step_40_finalize import FinalizeStep
from .step_50_launch import LaunchStep

__all__ = [
    "LoadManifestStep",
    "ResolveEntriesStep",
    "InstallEntriesStep",
    "FinalizeStep",
    "LaunchStep",
]
