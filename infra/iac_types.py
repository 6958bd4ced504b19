from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class NSGRule:
    name: str
    priority: int
    direction: str  # Inbound or Outbound
    access: str  # Allow or Deny
    protocol: str  # Tcp/Udp/*
    source: str
    destination: str
    source_port: str
    destination_port: str


@dataclass(frozen=True)
class NSGConfig:
    name: str
    rules: List[NSGRule]


@dataclass(frozen=True)
class SubnetConfig:
    name: str
    address_prefix: str
    nsg_name: str


@dataclass(frozen=True)
class VNetConfig:
    name: str
    address_space: List[str]
    subnets: Dict[str, SubnetConfig]  # keys: "aks", "ingress"
    network_security_groups: Dict[str, NSGConfig]


@dataclass(frozen=True)
class RegistryConfig:
    name: str
    sku: str  # Basic/Standard/Premium
    admin_enabled: bool


@dataclass(frozen=True)
class ServicePrincipalConfig:
    display_name: str
    password_rotation_days: int
    use_custom_role: bool
    custom_role_name: str


@dataclass(frozen=True)
class AKSConfig:
    cluster_name: str
    dns_prefix: str
    kubernetes_version: Optional[str]
    node_count: int
    vm_size: str
    os_disk_size_gb: int
    max_pods: int
    network_plugin: str  # azure or kubenet
    network_policy: str  # azure or calico
    service_cidr: str
    dns_service_ip: str
    enable_rbac: bool
    admin_username: str
    ssh_public_key: Optional[str]


@dataclass(frozen=True)
class AzureInfrastructureConfig:
    resource_group_name: str
    location: str
    environment: str
    vnet_config: VNetConfig
    registry_config: RegistryConfig
    sp_config: ServicePrincipalConfig
    aks_config: AKSConfig
    tags: Dict[str, str] = field(default_factory=dict)
