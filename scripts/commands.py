"""
Imperative equivalent of the declarative stack.

Builds the ordered Azure CLI commands that create the same resources as the
CDKTF stack, so operators can compare both paths or run the commands by hand.
"""

from __future__ import annotations

import json
import re
import shlex
from typing import List, Optional

from iac_types import AzureInfrastructureConfig
from modules.identity.identity import AKS_LEAST_PRIVILEGE_ACTIONS

SP_APP_ID = "$SP_APP_ID"
SP_PASSWORD = "$SP_PASSWORD"
SP_OBJECT_ID = "$SP_OBJECT_ID"
SUBSCRIPTION_ID = "$SUBSCRIPTION_ID"


def _group(cfg: AzureInfrastructureConfig) -> List[List[str]]:
    return [
        [
            "az", "group", "create",
            "--name", cfg.resource_group_name,
            "--location", cfg.location,
        ]
    ]


def _nsgs(cfg: AzureInfrastructureConfig) -> List[List[str]]:
    rg = cfg.resource_group_name
    cmds: List[List[str]] = []
    for nsg in cfg.vnet_config.network_security_groups.values():
        cmds.append(["az", "network", "nsg", "create", "-g", rg, "-n", nsg.name])
        for rule in nsg.rules:
            cmds.append(
                [
                    "az", "network", "nsg", "rule", "create",
                    "-g", rg,
                    "--nsg-name", nsg.name,
                    "-n", rule.name,
                    "--priority", str(rule.priority),
                    "--direction", rule.direction,
                    "--access", rule.access,
                    "--protocol", rule.protocol,
                    "--source-address-prefixes", rule.source,
                    "--source-port-ranges", rule.source_port,
                    "--destination-address-prefixes", rule.destination,
                    "--destination-port-ranges", rule.destination_port,
                ]
            )
    return cmds


def _vnet(cfg: AzureInfrastructureConfig) -> List[List[str]]:
    rg = cfg.resource_group_name
    vnet = cfg.vnet_config
    cmds: List[List[str]] = [
        [
            "az", "network", "vnet", "create",
            "-g", rg,
            "-n", vnet.name,
            "--address-prefixes", *vnet.address_space,
        ]
    ]
    for subnet in vnet.subnets.values():
        cmds.append(
            [
                "az", "network", "vnet", "subnet", "create",
                "-g", rg,
                "--vnet-name", vnet.name,
                "-n", subnet.name,
                "--address-prefixes", subnet.address_prefix,
                "--nsg", subnet.nsg_name,
            ]
        )
    return cmds


def _registry(cfg: AzureInfrastructureConfig) -> List[List[str]]:
    reg = cfg.registry_config
    cmd = [
        "az", "acr", "create",
        "-g", cfg.resource_group_name,
        "-n", reg.name,
        "--sku", reg.sku,
    ]
    if reg.admin_enabled:
        cmd.append("--admin-enabled")
    return [cmd]


def _identity(
    cfg: AzureInfrastructureConfig, subscription_id: str, sp_object_id: str, create_sp: bool
) -> List[List[str]]:
    sp = cfg.sp_config
    cmds: List[List[str]] = []
    if create_sp:
        cmds.append(create_sp_command(cfg))
    vnet_scope = (
        f"/subscriptions/{subscription_id}/resourceGroups/{cfg.resource_group_name}"
        f"/providers/Microsoft.Network/virtualNetworks/{cfg.vnet_config.name}"
    )
    acr_scope = (
        f"/subscriptions/{subscription_id}/resourceGroups/{cfg.resource_group_name}"
        f"/providers/Microsoft.ContainerRegistry/registries/{cfg.registry_config.name}"
    )
    network_role = "Network Contributor"
    if sp.use_custom_role:
        # Role definition JSON is produced by role_definition_json()
        cmds.append(
            [
                "az", "role", "definition", "create",
                "--role-definition", f"@{sp.custom_role_name}.json",
            ]
        )
        network_role = sp.custom_role_name
    cmds.append(
        [
            "az", "role", "assignment", "create",
            "--assignee-object-id", sp_object_id,
            "--assignee-principal-type", "ServicePrincipal",
            "--role", network_role,
            "--scope", vnet_scope,
        ]
    )
    cmds.append(
        [
            "az", "role", "assignment", "create",
            "--assignee-object-id", sp_object_id,
            "--assignee-principal-type", "ServicePrincipal",
            "--role", "AcrPull",
            "--scope", acr_scope,
        ]
    )
    return cmds


def _cluster(
    cfg: AzureInfrastructureConfig, subscription_id: str, sp_client_id: str, sp_secret: str
) -> List[List[str]]:
    aks = cfg.aks_config
    subnet_id = (
        f"/subscriptions/{subscription_id}/resourceGroups/{cfg.resource_group_name}"
        f"/providers/Microsoft.Network/virtualNetworks/{cfg.vnet_config.name}"
        f"/subnets/{cfg.vnet_config.subnets['aks'].name}"
    )
    cmd = [
        "az", "aks", "create",
        "-g", cfg.resource_group_name,
        "-n", aks.cluster_name,
        "--dns-name-prefix", aks.dns_prefix,
        "--node-count", str(aks.node_count),
        "--node-vm-size", aks.vm_size,
        "--node-osdisk-size", str(aks.os_disk_size_gb),
        "--max-pods", str(aks.max_pods),
        "--network-plugin", aks.network_plugin,
        "--network-policy", aks.network_policy,
        "--service-cidr", aks.service_cidr,
        "--dns-service-ip", aks.dns_service_ip,
        "--vnet-subnet-id", subnet_id,
        "--service-principal", sp_client_id,
        "--client-secret", sp_secret,
    ]
    if aks.kubernetes_version:
        cmd.extend(["--kubernetes-version", aks.kubernetes_version])
    if not aks.enable_rbac:
        cmd.append("--disable-rbac")
    if aks.ssh_public_key:
        cmd.extend(["--admin-username", aks.admin_username, "--ssh-key-value", aks.ssh_public_key])
    else:
        cmd.append("--generate-ssh-keys")
    return [cmd]


def create_sp_command(cfg: AzureInfrastructureConfig) -> List[str]:
    """Service principal without any default role assignment."""
    sp = cfg.sp_config
    return [
        "az", "ad", "sp", "create-for-rbac",
        "--name", sp.display_name,
        "--years", str(max(1, sp.password_rotation_days // 365)),
        "-o", "json",
    ]


def az_command_plan(
    cfg: AzureInfrastructureConfig,
    *,
    subscription_id: str = SUBSCRIPTION_ID,
    sp_client_id: Optional[str] = None,
    sp_secret: Optional[str] = None,
    sp_object_id: Optional[str] = None,
) -> List[List[str]]:
    """Return the Azure CLI commands, leaves first, that build cfg.

    When sp_client_id is given the service principal is assumed to exist and
    its create-for-rbac step is left out.
    """
    return [
        *_group(cfg),
        *_nsgs(cfg),
        *_vnet(cfg),
        *_registry(cfg),
        *_identity(
            cfg,
            subscription_id,
            sp_object_id or SP_OBJECT_ID,
            create_sp=sp_client_id is None,
        ),
        *_cluster(cfg, subscription_id, sp_client_id or SP_APP_ID, sp_secret or SP_PASSWORD),
    ]


def role_definition_json(cfg: AzureInfrastructureConfig, subscription_id: str) -> dict:
    """Custom role document for `az role definition create`."""
    return {
        "Name": cfg.sp_config.custom_role_name,
        "IsCustom": True,
        "Description": "Network and disk permissions required by the AKS service principal",
        "Actions": list(AKS_LEAST_PRIVILEGE_ACTIONS),
        "NotActions": [],
        "AssignableScopes": [f"/subscriptions/{subscription_id}"],
    }


_EXPANDABLE = re.compile(r"[\w/.\-@:$]*\$[A-Z_]+[\w/.\-@:$]*")


def _quote(arg: str) -> str:
    # Leave shell variables expandable
    if _EXPANDABLE.fullmatch(arg):
        return f'"{arg}"'
    return shlex.quote(arg)


def _render_commands(commands: List[List[str]]) -> List[str]:
    return [" ".join(_quote(a) for a in cmd) for cmd in commands]


def _capture_sp_lines(cfg: AzureInfrastructureConfig) -> List[str]:
    create = create_sp_command(cfg)[:-2] + ["--query", "[appId, password]", "-o", "tsv"]
    return [
        "# appId and password come back tab or newline separated",
        f"SP_CREDS=$({' '.join(_quote(a) for a in create)} | tr '\\n' '\\t')",
        'read -r SP_APP_ID SP_PASSWORD <<<"$SP_CREDS"',
        'SP_OBJECT_ID=$(az ad sp show --id "$SP_APP_ID" --query id -o tsv)',
    ]


def _role_file_lines(cfg: AzureInfrastructureConfig) -> List[str]:
    document = json.dumps(role_definition_json(cfg, SUBSCRIPTION_ID), indent=2)
    return [
        f"cat > {shlex.quote(cfg.sp_config.custom_role_name + '.json')} <<EOF",
        *document.splitlines(),
        "EOF",
    ]


def render_plan(cfg: AzureInfrastructureConfig) -> str:
    """Render the command plan as a standalone shell script.

    The script resolves the subscription, captures the service principal it
    creates and writes the custom role document before referencing them.
    """
    sub = SUBSCRIPTION_ID
    lines = [
        "#!/usr/bin/env bash",
        "set -euo pipefail",
        "",
        'SUBSCRIPTION_ID="${SUBSCRIPTION_ID:-$(az account show --query id -o tsv)}"',
        "",
    ]
    lines += _render_commands(
        [*_group(cfg), *_nsgs(cfg), *_vnet(cfg), *_registry(cfg)]
    )
    lines.append("")
    lines += _capture_sp_lines(cfg)
    if cfg.sp_config.use_custom_role:
        lines += _role_file_lines(cfg)
    lines.append("")
    lines += _render_commands(
        [
            *_identity(cfg, sub, SP_OBJECT_ID, create_sp=False),
            *_cluster(cfg, sub, SP_APP_ID, SP_PASSWORD),
        ]
    )
    return "\n".join(lines) + "\n"
