"""
Azure stack config helpers.

This module adapts tfvars (loaded elsewhere) into the strongly-typed
AzureInfrastructureConfig used by the CDKTF stack and the ARM template.
"""

from dataclasses import asdict
from typing import Any, Dict

from iac_types import AzureInfrastructureConfig
from utils.validation import ensure_valid


def build_stack_config(config: AzureInfrastructureConfig) -> AzureInfrastructureConfig:
    """Validate config before any construct is created.

    Both synthesis paths go through here so a bad CIDR or name fails the
    same way regardless of the target engine.
    """
    return ensure_valid(config)


def synth_config_json(config: AzureInfrastructureConfig) -> Dict[str, Any]:
    """Convert dataclasses to plain dict for diagnostics or outputs."""
    data = asdict(config)
    if data["aks_config"].get("ssh_public_key"):
        data["aks_config"]["ssh_public_key"] = "<redacted>"
    return data
