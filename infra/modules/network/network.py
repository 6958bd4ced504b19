"""
Network module.

Creates RG, NSGs (aks/ingress) with their rules, the VNet, both subnets and
the subnet to NSG associations.
"""

from __future__ import annotations

from typing import Dict, Tuple

from constructs import Construct

from cdktf import TerraformOutput
from cdktf_cdktf_provider_azurerm.resource_group import ResourceGroup
from cdktf_cdktf_provider_azurerm.virtual_network import VirtualNetwork
from cdktf_cdktf_provider_azurerm.subnet import Subnet
from cdktf_cdktf_provider_azurerm.network_security_group import NetworkSecurityGroup
from cdktf_cdktf_provider_azurerm.network_security_rule import NetworkSecurityRule
from cdktf_cdktf_provider_azurerm.subnet_network_security_group_association import (
    SubnetNetworkSecurityGroupAssociation,
)

from iac_types import AzureInfrastructureConfig, NSGConfig


def _construct_id(*parts: str) -> str:
    head, *rest = [w for p in parts for w in p.split("-") if w]
    return head + "".join(w[:1].upper() + w[1:] for w in rest)


def _provision_nsg(
    scope: Construct, key: str, nsg_cfg: NSGConfig, location: str, rg_name: str, tags
) -> NetworkSecurityGroup:
    nsg = NetworkSecurityGroup(
        scope,
        _construct_id("nsg", key),
        name=nsg_cfg.name,
        location=location,
        resource_group_name=rg_name,
        tags=tags,
    )
    for rule in nsg_cfg.rules:
        NetworkSecurityRule(
            scope,
            _construct_id("nsg", key, rule.name),
            name=rule.name,
            priority=rule.priority,
            direction=rule.direction,
            access=rule.access,
            protocol=rule.protocol,
            source_port_range=rule.source_port,
            destination_port_range=rule.destination_port,
            source_address_prefix=rule.source,
            destination_address_prefix=rule.destination,
            resource_group_name=rg_name,
            network_security_group_name=nsg.name,
        )
    return nsg


def provision_network(
    *, scope: Construct, cfg: AzureInfrastructureConfig
) -> Tuple[ResourceGroup, VirtualNetwork, Subnet, Subnet, Dict[str, NetworkSecurityGroup]]:
    """Provision networking and return (rg, vnet, subnet_aks, subnet_ingress, nsgs)."""
    rg = ResourceGroup(
        scope, "rg", name=cfg.resource_group_name, location=cfg.location, tags=cfg.tags
    )

    # Security groups are leaves; subnets bind to them below.
    nsgs: Dict[str, NetworkSecurityGroup] = {
        key: _provision_nsg(scope, key, nsg_cfg, cfg.location, rg.name, cfg.tags)
        for key, nsg_cfg in cfg.vnet_config.network_security_groups.items()
    }
    nsg_by_name = {
        nsg_cfg.name: nsgs[key]
        for key, nsg_cfg in cfg.vnet_config.network_security_groups.items()
    }

    vnet = VirtualNetwork(
        scope,
        "vnet",
        name=cfg.vnet_config.name,
        location=cfg.location,
        resource_group_name=rg.name,
        address_space=cfg.vnet_config.address_space,
        tags=cfg.tags,
    )

    subnet_aks = Subnet(
        scope,
        "subnetAks",
        name=cfg.vnet_config.subnets["aks"].name,
        resource_group_name=rg.name,
        virtual_network_name=vnet.name,
        address_prefixes=[cfg.vnet_config.subnets["aks"].address_prefix],
        service_endpoints=["Microsoft.ContainerRegistry"],
        depends_on=[vnet],
    )

    subnet_ingress = Subnet(
        scope,
        "subnetIngress",
        name=cfg.vnet_config.subnets["ingress"].name,
        resource_group_name=rg.name,
        virtual_network_name=vnet.name,
        address_prefixes=[cfg.vnet_config.subnets["ingress"].address_prefix],
        depends_on=[vnet],
    )

    SubnetNetworkSecurityGroupAssociation(
        scope,
        "subnetAksNsgAssoc",
        subnet_id=subnet_aks.id,
        network_security_group_id=nsg_by_name[cfg.vnet_config.subnets["aks"].nsg_name].id,
    )
    SubnetNetworkSecurityGroupAssociation(
        scope,
        "subnetIngressNsgAssoc",
        subnet_id=subnet_ingress.id,
        network_security_group_id=nsg_by_name[cfg.vnet_config.subnets["ingress"].nsg_name].id,
    )

    TerraformOutput(scope, "resource_group", value=rg.name)
    TerraformOutput(scope, "virtual_network", value=vnet.name)

    return rg, vnet, subnet_aks, subnet_ingress, nsgs
