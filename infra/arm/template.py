"""
ARM template rendering.

Builds the Azure Resource Manager deployment template equivalent to the
CDKTF stack from the same typed config. A resource-group deployment cannot
create Azure AD objects or subscription-scoped role definitions, so the
service principal and the network role come in as parameters.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from iac_types import AzureInfrastructureConfig, NSGConfig

SCHEMA = "https://schema.management.azure.com/schemas/2015-01-01/deploymentTemplate.json#"
CONTENT_VERSION = "1.0.0.0"

NSG_TYPE = "Microsoft.Network/networkSecurityGroups"
VNET_TYPE = "Microsoft.Network/virtualNetworks"
SUBNET_TYPE = "Microsoft.Network/virtualNetworks/subnets"
ACR_TYPE = "Microsoft.ContainerRegistry/registries"
ROLE_ASSIGNMENT_TYPE = "Microsoft.Authorization/roleAssignments"
ROLE_DEFINITION_TYPE = "Microsoft.Authorization/roleDefinitions"
AKS_TYPE = "Microsoft.ContainerService/managedClusters"

API_VERSIONS = {
    NSG_TYPE: "2023-04-01",
    VNET_TYPE: "2023-04-01",
    ACR_TYPE: "2023-07-01",
    ROLE_ASSIGNMENT_TYPE: "2022-04-01",
    AKS_TYPE: "2024-02-01",
}

# Built-in role definition GUIDs
NETWORK_CONTRIBUTOR_ID = "4d97b98b-1d4f-4787-a291-c67834d212e7"
ACR_PULL_ID = "7f951dda-4ed3-4680-a7ca-43fe172d538d"


def _name_arg(name: str) -> str:
    """Render a resource name as a template function argument."""
    if name.startswith("[") and name.endswith("]"):
        return name[1:-1]
    return f"'{name}'"


def _resource_id(type_name: str, *names: str) -> str:
    args = ", ".join(_name_arg(n) for n in names)
    return f"resourceId('{type_name}', {args})"


def resource_ref(resource: Dict[str, Any]) -> str:
    """Return the expression other resources use in dependsOn to reach resource."""
    if "scope" in resource:
        target_type, _, target_name = resource["scope"].rpartition("/")
        return (
            f"[extensionResourceId({_resource_id(target_type, target_name)}, "
            f"'{resource['type']}', {_name_arg(resource['name'])})]"
        )
    return f"[{_resource_id(resource['type'], resource['name'])}]"


def _nsg_resource(nsg: NSGConfig, tags: Dict[str, str]) -> Dict[str, Any]:
    rules = [
        {
            "name": rule.name,
            "properties": {
                "priority": rule.priority,
                "direction": rule.direction,
                "access": rule.access,
                "protocol": rule.protocol,
                "sourceAddressPrefix": rule.source,
                "sourcePortRange": rule.source_port,
                "destinationAddressPrefix": rule.destination,
                "destinationPortRange": rule.destination_port,
            },
        }
        for rule in nsg.rules
    ]
    return {
        "type": NSG_TYPE,
        "apiVersion": API_VERSIONS[NSG_TYPE],
        "name": nsg.name,
        "location": "[parameters('location')]",
        "tags": tags,
        "properties": {"securityRules": rules},
    }


def _role_assignment(
    target: Dict[str, Any], role_definition_guid: str, label: str
) -> Dict[str, Any]:
    target_id = _resource_id(target["type"], target["name"])
    return {
        "type": ROLE_ASSIGNMENT_TYPE,
        "apiVersion": API_VERSIONS[ROLE_ASSIGNMENT_TYPE],
        "name": f"[guid({target_id}, parameters('servicePrincipalObjectId'), '{label}')]",
        "scope": f"{target['type']}/{target['name']}",
        "dependsOn": [resource_ref(target)],
        "properties": {
            "roleDefinitionId": (
                f"[subscriptionResourceId('{ROLE_DEFINITION_TYPE}', {role_definition_guid})]"
            ),
            "principalId": "[parameters('servicePrincipalObjectId')]",
            "principalType": "ServicePrincipal",
        },
    }


def _parameters(cfg: AzureInfrastructureConfig) -> Dict[str, Any]:
    return {
        "location": {
            "type": "string",
            "defaultValue": cfg.location,
            "metadata": {"description": "Location for all resources."},
        },
        "servicePrincipalClientId": {
            "type": "string",
            "metadata": {"description": "Application (client) id of the cluster service principal."},
        },
        "servicePrincipalObjectId": {
            "type": "string",
            "metadata": {"description": "Object id of the cluster service principal."},
        },
        "servicePrincipalClientSecret": {
            "type": "securestring",
            "metadata": {"description": "Password of the cluster service principal."},
        },
        "networkRoleDefinitionId": {
            "type": "string",
            "defaultValue": NETWORK_CONTRIBUTOR_ID,
            "metadata": {
                "description": "GUID of the role granted on the VNet; defaults to Network Contributor."
            },
        },
    }


def _aks_resource(
    cfg: AzureInfrastructureConfig, depends_on: List[str]
) -> Dict[str, Any]:
    aks = cfg.aks_config
    subnet = cfg.vnet_config.subnets["aks"]
    properties: Dict[str, Any] = {
        "dnsPrefix": aks.dns_prefix,
        "enableRBAC": aks.enable_rbac,
        "agentPoolProfiles": [
            {
                "name": "default",
                "mode": "System",
                "osType": "Linux",
                "type": "VirtualMachineScaleSets",
                "count": aks.node_count,
                "vmSize": aks.vm_size,
                "osDiskSizeGB": aks.os_disk_size_gb,
                "maxPods": aks.max_pods,
                "vnetSubnetID": f"[{_resource_id(SUBNET_TYPE, cfg.vnet_config.name, subnet.name)}]",
            }
        ],
        "servicePrincipalProfile": {
            "clientId": "[parameters('servicePrincipalClientId')]",
            "secret": "[parameters('servicePrincipalClientSecret')]",
        },
        "networkProfile": {
            "networkPlugin": aks.network_plugin,
            "networkPolicy": aks.network_policy,
            "loadBalancerSku": "standard",
            "serviceCidr": aks.service_cidr,
            "dnsServiceIP": aks.dns_service_ip,
        },
    }
    if aks.kubernetes_version:
        properties["kubernetesVersion"] = aks.kubernetes_version
    if aks.ssh_public_key:
        properties["linuxProfile"] = {
            "adminUsername": aks.admin_username,
            "ssh": {"publicKeys": [{"keyData": aks.ssh_public_key}]},
        }
    return {
        "type": AKS_TYPE,
        "apiVersion": API_VERSIONS[AKS_TYPE],
        "name": aks.cluster_name,
        "location": "[parameters('location')]",
        "tags": cfg.tags,
        "dependsOn": depends_on,
        "properties": properties,
    }


def build_template(cfg: AzureInfrastructureConfig) -> Dict[str, Any]:
    """Render the deployment template for cfg."""
    vnet_cfg = cfg.vnet_config
    nsgs = [_nsg_resource(n, cfg.tags) for n in vnet_cfg.network_security_groups.values()]
    nsg_by_name = {n["name"]: n for n in nsgs}

    vnet = {
        "type": VNET_TYPE,
        "apiVersion": API_VERSIONS[VNET_TYPE],
        "name": vnet_cfg.name,
        "location": "[parameters('location')]",
        "tags": cfg.tags,
        "dependsOn": [resource_ref(n) for n in nsgs],
        "properties": {
            "addressSpace": {"addressPrefixes": list(vnet_cfg.address_space)},
            "subnets": [
                {
                    "name": s.name,
                    "properties": {
                        "addressPrefix": s.address_prefix,
                        "networkSecurityGroup": {
                            "id": resource_ref(nsg_by_name[s.nsg_name])
                        },
                    },
                }
                for s in vnet_cfg.subnets.values()
            ],
        },
    }

    reg_cfg = cfg.registry_config
    acr = {
        "type": ACR_TYPE,
        "apiVersion": API_VERSIONS[ACR_TYPE],
        "name": reg_cfg.name,
        "location": "[parameters('location')]",
        "tags": cfg.tags,
        "sku": {"name": reg_cfg.sku},
        "properties": {"adminUserEnabled": reg_cfg.admin_enabled},
    }

    network_role = _role_assignment(
        vnet, "parameters('networkRoleDefinitionId')", "network"
    )
    acr_pull = _role_assignment(acr, f"'{ACR_PULL_ID}'", "acrpull")

    aks = _aks_resource(
        cfg,
        depends_on=[resource_ref(vnet), resource_ref(network_role), resource_ref(acr_pull)],
    )

    aks_id = _resource_id(AKS_TYPE, cfg.aks_config.cluster_name)
    acr_id = _resource_id(ACR_TYPE, reg_cfg.name)
    return {
        "$schema": SCHEMA,
        "contentVersion": CONTENT_VERSION,
        "parameters": _parameters(cfg),
        "variables": {},
        "resources": [*nsgs, vnet, acr, network_role, acr_pull, aks],
        "outputs": {
            "controlPlaneFQDN": {
                "type": "string",
                "value": f"[reference({aks_id}).fqdn]",
            },
            "acrLoginServer": {
                "type": "string",
                "value": f"[reference({acr_id}).loginServer]",
            },
        },
    }


def deployment_order(template: Dict[str, Any]) -> List[str]:
    """Topologically sort resources by dependsOn.

    Returns "type/name" labels. Ties keep declaration order.
    """
    resources = template.get("resources", [])
    index_by_ref = {resource_ref(r): i for i, r in enumerate(resources)}
    deps: List[List[int]] = []
    for r in resources:
        resolved: List[int] = []
        for ref in r.get("dependsOn", []):
            if ref not in index_by_ref:
                raise ValueError(f"{r['type']}/{r['name']} depends on unknown resource {ref}")
            resolved.append(index_by_ref[ref])
        deps.append(resolved)

    done: List[int] = []
    remaining = list(range(len(resources)))
    while remaining:
        ready: Optional[int] = next(
            (i for i in remaining if all(d in done for d in deps[i])), None
        )
        if ready is None:
            stuck = ", ".join(f"{resources[i]['type']}/{resources[i]['name']}" for i in remaining)
            raise ValueError(f"dependency cycle among: {stuck}")
        done.append(ready)
        remaining.remove(ready)
    return [f"{resources[i]['type']}/{resources[i]['name']}" for i in done]


def write_template(cfg: AzureInfrastructureConfig, path: Path) -> Dict[str, Any]:
    """Render and write the template as pretty JSON; return the template."""
    template = build_template(cfg)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(template, indent=2) + "\n", encoding="utf-8")
    return template
