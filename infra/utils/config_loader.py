"""
Config loader for tfvars -> typed config used by the CDKTF stack.

Functional, pure helpers that parse a minimal subset of .tfvars syntax
for the variables used by this repo. No external dependencies.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from iac_types import (
    AKSConfig,
    AzureInfrastructureConfig,
    NSGConfig,
    NSGRule,
    RegistryConfig,
    ServicePrincipalConfig,
    SubnetConfig,
    VNetConfig,
)

DEFAULT_TFVARS = "vars/dev.tfvars"


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _parse_tfvars(content: str) -> Dict[str, str]:
    """Very small tfvars parser for simple key = value pairs.

    Supports strings, integers, booleans on single lines.
    Lines starting with '#' are ignored.
    """
    vars_map: Dict[str, str] = {}
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip()
        # Remove potential trailing comments
        if " #" in val:
            val = val.split(" #", 1)[0].strip()
        vars_map[key] = val
    return vars_map


def _to_bool(value: str) -> bool:
    if value.lower() in ("true", "1"):
        return True
    if value.lower() in ("false", "0"):
        return False
    raise ValueError(f"Invalid boolean value: {value}")


def _to_int(value: str) -> int:
    try:
        return int(value)
    except Exception as ex:  # noqa: BLE001 - rethrow with context
        raise ValueError(f"Invalid int value: {value}") from ex


def _required(vars_map: Dict[str, str], key: str) -> str:
    if key not in vars_map:
        raise KeyError(f"Missing required var: {key}")
    return _strip_quotes(vars_map[key])


def _optional(vars_map: Dict[str, str], key: str, default: str) -> str:
    if key not in vars_map:
        return default
    return _strip_quotes(vars_map[key])


def _build_names(prefix: str, env: str) -> Tuple[str, str, str]:
    rg = f"{prefix}-{env}-rg"
    vnet = f"{prefix}-{env}-vnet"
    aks = f"{prefix}-{env}-aks"
    return rg, vnet, aks


def _registry_name(prefix: str, env: str) -> str:
    # ACR names are globally unique and alphanumeric only
    return re.sub(r"[^a-zA-Z0-9]", "", f"{prefix}{env}acr").lower()


def _ingress_rules(source: str) -> List[NSGRule]:
    return [
        NSGRule(
            name="allow-http-inbound",
            priority=100,
            direction="Inbound",
            access="Allow",
            protocol="Tcp",
            source=source,
            destination="*",
            source_port="*",
            destination_port="80",
        ),
        NSGRule(
            name="allow-https-inbound",
            priority=110,
            direction="Inbound",
            access="Allow",
            protocol="Tcp",
            source=source,
            destination="*",
            source_port="*",
            destination_port="443",
        ),
    ]


def _aks_rules() -> List[NSGRule]:
    return [
        NSGRule(
            name="allow-azure-lb-inbound",
            priority=100,
            direction="Inbound",
            access="Allow",
            protocol="*",
            source="AzureLoadBalancer",
            destination="*",
            source_port="*",
            destination_port="*",
        ),
        NSGRule(
            name="allow-vnet-inbound",
            priority=200,
            direction="Inbound",
            access="Allow",
            protocol="*",
            source="VirtualNetwork",
            destination="VirtualNetwork",
            source_port="*",
            destination_port="*",
        ),
    ]


def _build_vnet_config(
    name: str,
    vnet_cidr: str,
    aks_cidr: str,
    ingress_cidr: str,
    allowed_ingress_source: str,
) -> VNetConfig:
    subnets = {
        "aks": SubnetConfig(
            name=f"{name}-aks", address_prefix=aks_cidr, nsg_name=f"{name}-nsg-aks"
        ),
        "ingress": SubnetConfig(
            name=f"{name}-ingress",
            address_prefix=ingress_cidr,
            nsg_name=f"{name}-nsg-ingress",
        ),
    }
    nsgs = {
        "aks": NSGConfig(name=f"{name}-nsg-aks", rules=_aks_rules()),
        "ingress": NSGConfig(
            name=f"{name}-nsg-ingress", rules=_ingress_rules(allowed_ingress_source)
        ),
    }
    return VNetConfig(
        name=name,
        address_space=[vnet_cidr],
        subnets=subnets,
        network_security_groups=nsgs,
    )


def _build_aks_config(aks_name: str, vars_map: Dict[str, str]) -> AKSConfig:
    version: Optional[str] = _optional(vars_map, "aks_kubernetes_version", "") or None
    ssh_key: Optional[str] = _optional(vars_map, "ssh_public_key", "") or None
    return AKSConfig(
        cluster_name=aks_name,
        dns_prefix=f"{aks_name}-dns",
        kubernetes_version=version,
        node_count=_to_int(_required(vars_map, "aks_node_count")),
        vm_size=_required(vars_map, "aks_vm_size"),
        os_disk_size_gb=_to_int(_optional(vars_map, "aks_os_disk_size_gb", "30")),
        max_pods=_to_int(_optional(vars_map, "aks_max_pods", "30")),
        network_plugin=_optional(vars_map, "aks_network_plugin", "azure"),
        network_policy=_optional(vars_map, "aks_network_policy", "azure"),
        service_cidr=_optional(vars_map, "aks_service_cidr", "10.0.0.0/16"),
        dns_service_ip=_optional(vars_map, "aks_dns_service_ip", "10.0.0.10"),
        enable_rbac=_to_bool(_optional(vars_map, "aks_enable_rbac", "true")),
        admin_username=_optional(vars_map, "aks_admin_username", "azureuser"),
        ssh_public_key=ssh_key,
    )


def _build_registry_config(
    vars_map: Dict[str, str], prefix: str, env: str
) -> RegistryConfig:
    return RegistryConfig(
        name=_registry_name(prefix, env),
        sku=_optional(vars_map, "acr_sku", "Standard"),
        admin_enabled=_to_bool(_optional(vars_map, "acr_admin_enabled", "false")),
    )


def _build_sp_config(
    vars_map: Dict[str, str], prefix: str, env: str
) -> ServicePrincipalConfig:
    return ServicePrincipalConfig(
        display_name=f"{prefix}-{env}-sp",
        password_rotation_days=_to_int(
            _optional(vars_map, "sp_password_rotation_days", "365")
        ),
        use_custom_role=_to_bool(_optional(vars_map, "use_custom_role", "true")),
        custom_role_name=f"{prefix}-{env}-aks-least-privilege",
    )


def build_config(vars_map: Dict[str, str]) -> AzureInfrastructureConfig:
    """Build the typed config from an already-parsed tfvars map."""
    env = _required(vars_map, "env")
    location = _required(vars_map, "location")
    prefix = _required(vars_map, "name_prefix")

    rg_name, vnet_name, aks_name = _build_names(prefix, env)

    vnet_cfg = _build_vnet_config(
        name=vnet_name,
        vnet_cidr=_required(vars_map, "vnet_cidr"),
        aks_cidr=_required(vars_map, "subnet_aks_cidr"),
        ingress_cidr=_required(vars_map, "subnet_ingress_cidr"),
        allowed_ingress_source=_optional(vars_map, "allowed_ingress_cidr", "Internet"),
    )

    return AzureInfrastructureConfig(
        resource_group_name=rg_name,
        location=location,
        environment=env,
        vnet_config=vnet_cfg,
        registry_config=_build_registry_config(vars_map, prefix, env),
        sp_config=_build_sp_config(vars_map, prefix, env),
        aks_config=_build_aks_config(aks_name=aks_name, vars_map=vars_map),
        tags={"environment": env, "managed-by": "cdktf"},
    )


def load_tfvars_config(
    *, repo_root: Path, tfvars_file: Optional[str] = None
) -> AzureInfrastructureConfig:
    if not tfvars_file:
        # Use default if env var is missing or empty
        tfvars_file_env = os.getenv("TFVARS_FILE")
        tfvars_file = (
            tfvars_file_env
            if (tfvars_file_env and tfvars_file_env.strip())
            else DEFAULT_TFVARS
        )
    vars_path = (repo_root / tfvars_file).resolve()
    if not vars_path.exists():
        raise FileNotFoundError(f"tfvars file not found: {vars_path}")

    content = vars_path.read_text(encoding="utf-8")
    return build_config(_parse_tfvars(content))
