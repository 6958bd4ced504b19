"""
Preflight validation helpers.

Pure, minimal functions to validate required environment variables,
network layout and naming rules, and format actionable error messages
for users. Nothing here talks to Azure.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Dict, List, Mapping, Tuple

from iac_types import AzureInfrastructureConfig, NSGConfig

REQUIRED_ENV = ["ARM_SUBSCRIPTION_ID", "ARM_TENANT_ID"]
REGISTRY_SKUS = ("Basic", "Standard", "Premium")
NETWORK_PLUGINS = ("azure", "kubenet")
_REGISTRY_NAME = re.compile(r"^[a-zA-Z0-9]{5,50}$")


def missing_env(env: Mapping[str, str], keys: List[str]) -> List[str]:
    """Return the list of keys missing in the provided environment mapping."""
    return [k for k in keys if not env.get(k)]


def format_missing_env_message(missing: List[str]) -> str:
    """Format a friendly, actionable message for missing env vars."""
    if not missing:
        return ""
    lines: List[str] = []
    lines.append("Preflight check failed: missing environment variables")
    lines.append("")
    lines.append("Missing:")
    for k in missing:
        lines.append(f"  - {k}")
    lines.append("")
    lines.append("How to set them (current shell session):")
    for k in missing:
        lines.append(f"  export {k}=\"<value>\"")
    lines.append("")
    lines.append("Then re-run: python -m scripts.cli infra-deploy --project-dir infra")
    return "\n".join(lines)


def _parse_networks(
    label: str, cidrs: List[str], errors: List[str]
) -> List[ipaddress.IPv4Network]:
    nets: List[ipaddress.IPv4Network] = []
    for cidr in cidrs:
        try:
            nets.append(ipaddress.IPv4Network(cidr, strict=True))
        except ValueError as ex:
            errors.append(f"{label}: invalid CIDR '{cidr}' ({ex})")
    return nets


def _validate_subnets(cfg: AzureInfrastructureConfig, errors: List[str]) -> None:
    vnet = cfg.vnet_config
    space = _parse_networks(f"vnet {vnet.name}", vnet.address_space, errors)
    parsed: List[Tuple[str, ipaddress.IPv4Network]] = []
    for key, subnet in vnet.subnets.items():
        nets = _parse_networks(f"subnet {subnet.name}", [subnet.address_prefix], errors)
        if not nets:
            continue
        net = nets[0]
        if space and not any(net.subnet_of(s) for s in space):
            errors.append(
                f"subnet {subnet.name}: {net} is outside the vnet address space "
                f"{', '.join(vnet.address_space)}"
            )
        for other_name, other in parsed:
            if net.overlaps(other):
                errors.append(f"subnet {subnet.name}: {net} overlaps {other_name} ({other})")
        parsed.append((subnet.name, net))
        if subnet.nsg_name not in {n.name for n in vnet.network_security_groups.values()}:
            errors.append(f"subnet {subnet.name}: unknown NSG '{subnet.nsg_name}'")

    aks = cfg.aks_config
    svc = _parse_networks("aks service_cidr", [aks.service_cidr], errors)
    if not svc:
        return
    service_net = svc[0]
    for s in space:
        if service_net.overlaps(s):
            errors.append(f"aks service_cidr {service_net} overlaps the vnet address space {s}")
    try:
        dns_ip = ipaddress.IPv4Address(aks.dns_service_ip)
    except ValueError as ex:
        errors.append(f"aks dns_service_ip: {ex}")
        return
    if dns_ip not in service_net:
        errors.append(f"aks dns_service_ip {dns_ip} is not inside service_cidr {service_net}")
    elif dns_ip in (service_net.network_address, service_net.network_address + 1):
        errors.append(f"aks dns_service_ip {dns_ip} is reserved in {service_net}")


def _validate_nsg(nsg: NSGConfig, errors: List[str]) -> None:
    seen: Dict[Tuple[str, int], str] = {}
    for rule in nsg.rules:
        if not 100 <= rule.priority <= 4096:
            errors.append(
                f"nsg {nsg.name}: rule {rule.name} priority {rule.priority} not in 100-4096"
            )
        key = (rule.direction, rule.priority)
        if key in seen:
            errors.append(
                f"nsg {nsg.name}: rules {seen[key]} and {rule.name} share "
                f"{rule.direction} priority {rule.priority}"
            )
        seen[key] = rule.name


def validate_config(cfg: AzureInfrastructureConfig) -> List[str]:
    """Return a list of problems found in cfg; empty when valid."""
    errors: List[str] = []
    _validate_subnets(cfg, errors)
    for nsg in cfg.vnet_config.network_security_groups.values():
        _validate_nsg(nsg, errors)

    reg = cfg.registry_config
    if not _REGISTRY_NAME.match(reg.name):
        errors.append(f"registry name '{reg.name}' must be 5-50 alphanumeric characters")
    if reg.sku not in REGISTRY_SKUS:
        errors.append(f"registry sku '{reg.sku}' must be one of {', '.join(REGISTRY_SKUS)}")

    aks = cfg.aks_config
    if aks.node_count < 1:
        errors.append(f"aks node_count must be >= 1, got {aks.node_count}")
    if aks.network_plugin not in NETWORK_PLUGINS:
        errors.append(
            f"aks network_plugin '{aks.network_plugin}' must be one of {', '.join(NETWORK_PLUGINS)}"
        )
    if aks.network_plugin == "kubenet" and aks.network_policy == "azure":
        errors.append("aks network_policy 'azure' requires network_plugin 'azure', got 'kubenet'")
    if cfg.sp_config.password_rotation_days < 1:
        errors.append("sp password_rotation_days must be >= 1")
    return errors


def ensure_valid(cfg: AzureInfrastructureConfig) -> AzureInfrastructureConfig:
    """Raise ValueError listing every problem, or return cfg unchanged."""
    errors = validate_config(cfg)
    if errors:
        raise ValueError("Invalid configuration:\n  - " + "\n  - ".join(errors))
    return cfg
