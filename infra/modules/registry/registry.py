"""
Container registry module.

Creates the Azure Container Registry the cluster pulls images from.
"""

from __future__ import annotations

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.container_registry import ContainerRegistry

from iac_types import AzureInfrastructureConfig


def provision_registry(
    *, scope: Construct, cfg: AzureInfrastructureConfig, rg_name: str
) -> ContainerRegistry:
    """Provision the registry and return it."""
    acr = ContainerRegistry(
        scope,
        "acr",
        name=cfg.registry_config.name,
        location=cfg.location,
        resource_group_name=rg_name,
        sku=cfg.registry_config.sku,
        admin_enabled=cfg.registry_config.admin_enabled,
        tags=cfg.tags,
    )
    TerraformOutput(scope, "acr_login_server", value=acr.login_server)
    return acr
