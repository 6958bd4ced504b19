"""
AKS module.

Creates the managed cluster in the AKS subnet, authenticated with the
service principal from the identity module. The cluster waits for every
role assignment so the principal can join the subnet on first boot.
"""

from __future__ import annotations

from typing import Any, Dict

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.kubernetes_cluster import KubernetesCluster

from iac_types import AzureInfrastructureConfig
from modules.identity.identity import Identity


def provision_aks(
    *,
    scope: Construct,
    cfg: AzureInfrastructureConfig,
    rg_name: str,
    subnet_aks,
    identity: Identity,
) -> KubernetesCluster:
    """Provision AKS using settings from cfg and return the cluster."""
    aks_cfg = cfg.aks_config

    network_profile: Dict[str, Any] = {
        "network_plugin": aks_cfg.network_plugin,
        "network_policy": aks_cfg.network_policy,
        "load_balancer_sku": "standard",
        "service_cidr": aks_cfg.service_cidr,
        "dns_service_ip": aks_cfg.dns_service_ip,
    }

    linux_profile = (
        {
            "admin_username": aks_cfg.admin_username,
            "ssh_key": {"key_data": aks_cfg.ssh_public_key},
        }
        if aks_cfg.ssh_public_key
        else None
    )

    aks = KubernetesCluster(
        scope,
        "aks",
        name=aks_cfg.cluster_name,
        location=cfg.location,
        resource_group_name=rg_name,
        dns_prefix=aks_cfg.dns_prefix,
        kubernetes_version=aks_cfg.kubernetes_version,
        default_node_pool={
            "name": "default",
            "vm_size": aks_cfg.vm_size,
            "node_count": aks_cfg.node_count,
            "os_disk_size_gb": aks_cfg.os_disk_size_gb,
            "max_pods": aks_cfg.max_pods,
            "vnet_subnet_id": subnet_aks.id,
            "type": "VirtualMachineScaleSets",
        },
        service_principal={
            "client_id": identity.application.client_id,
            "client_secret": identity.password.value,
        },
        linux_profile=linux_profile,
        network_profile=network_profile,
        role_based_access_control_enabled=aks_cfg.enable_rbac,
        tags=cfg.tags,
        depends_on=list(identity.role_assignments),
    )

    TerraformOutput(scope, "aks_name", value=aks.name)
    TerraformOutput(scope, "kube_config", value=aks.kube_config_raw, sensitive=True)
    return aks
