"""
Identity module.

Creates the Azure AD application, its service principal and a generated
password, then grants the principal what the cluster needs: network
permissions on the VNet (custom least-privilege role or built-in Network
Contributor) and AcrPull on the registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from constructs import Construct

from cdktf import Fn, TerraformOutput
from cdktf_cdktf_provider_azuread.application import Application
from cdktf_cdktf_provider_azuread.service_principal import ServicePrincipal
from cdktf_cdktf_provider_azuread.service_principal_password import (
    ServicePrincipalPassword,
)
from cdktf_cdktf_provider_azurerm.container_registry import ContainerRegistry
from cdktf_cdktf_provider_azurerm.data_azurerm_subscription import (
    DataAzurermSubscription,
)
from cdktf_cdktf_provider_azurerm.role_assignment import RoleAssignment
from cdktf_cdktf_provider_azurerm.role_definition import (
    RoleDefinition,
    RoleDefinitionPermissions,
)
from cdktf_cdktf_provider_azurerm.virtual_network import VirtualNetwork
from cdktf_cdktf_provider_time.rotating import Rotating

from iac_types import AzureInfrastructureConfig

# Actions the cluster's cloud provider integration performs against the
# network; everything else stays with the subscription owner.
AKS_LEAST_PRIVILEGE_ACTIONS: List[str] = [
    "Microsoft.Network/virtualNetworks/read",
    "Microsoft.Network/virtualNetworks/subnets/read",
    "Microsoft.Network/virtualNetworks/subnets/join/action",
    "Microsoft.Network/loadBalancers/read",
    "Microsoft.Network/loadBalancers/write",
    "Microsoft.Network/loadBalancers/delete",
    "Microsoft.Network/publicIPAddresses/read",
    "Microsoft.Network/publicIPAddresses/write",
    "Microsoft.Network/publicIPAddresses/delete",
    "Microsoft.Network/publicIPAddresses/join/action",
    "Microsoft.Network/routeTables/read",
    "Microsoft.Network/routeTables/write",
    "Microsoft.Network/routeTables/routes/read",
    "Microsoft.Network/routeTables/routes/write",
    "Microsoft.Network/networkSecurityGroups/read",
    "Microsoft.Network/networkSecurityGroups/write",
    "Microsoft.Network/networkInterfaces/read",
    "Microsoft.Compute/disks/read",
    "Microsoft.Compute/disks/write",
    "Microsoft.Compute/disks/delete",
]

NETWORK_CONTRIBUTOR = "Network Contributor"
ACR_PULL = "AcrPull"
PASSWORD_GRACE = "168h"


@dataclass
class Identity:
    application: Application
    service_principal: ServicePrincipal
    password: ServicePrincipalPassword
    role_definition: Optional[RoleDefinition] = None
    role_assignments: List[RoleAssignment] = field(default_factory=list)


def provision_identity(
    *,
    scope: Construct,
    cfg: AzureInfrastructureConfig,
    vnet: VirtualNetwork,
    registry: ContainerRegistry,
) -> Identity:
    """Provision the AD application chain and role assignments."""
    sp_cfg = cfg.sp_config

    app = Application(scope, "adApp", display_name=sp_cfg.display_name)
    sp = ServicePrincipal(scope, "sp", client_id=app.client_id)

    rotation = Rotating(
        scope, "spPasswordRotation", rotation_days=sp_cfg.password_rotation_days
    )
    password = ServicePrincipalPassword(
        scope,
        "spPassword",
        service_principal_id=sp.id,
        display_name=f"{sp_cfg.display_name}-aks",
        rotate_when_changed={"rotation": rotation.id},
        # valid until one grace period past the next rotation
        end_date=Fn.timeadd(rotation.rotation_rfc3339, PASSWORD_GRACE),
    )

    identity = Identity(application=app, service_principal=sp, password=password)

    if sp_cfg.use_custom_role:
        subscription = DataAzurermSubscription(scope, "current")
        role = RoleDefinition(
            scope,
            "aksLeastPrivilegeRole",
            name=sp_cfg.custom_role_name,
            scope=subscription.id,
            description="Network and disk permissions required by the AKS service principal",
            permissions=[RoleDefinitionPermissions(actions=AKS_LEAST_PRIVILEGE_ACTIONS)],
            assignable_scopes=[subscription.id],
        )
        identity.role_definition = role
        network_role = RoleAssignment(
            scope,
            "spNetworkRole",
            scope=vnet.id,
            role_definition_id=role.role_definition_resource_id,
            principal_id=sp.object_id,
            skip_service_principal_aad_check=True,
        )
    else:
        network_role = RoleAssignment(
            scope,
            "spNetworkRole",
            scope=vnet.id,
            role_definition_name=NETWORK_CONTRIBUTOR,
            principal_id=sp.object_id,
            skip_service_principal_aad_check=True,
        )
    identity.role_assignments.append(network_role)

    identity.role_assignments.append(
        RoleAssignment(
            scope,
            "spAcrPull",
            scope=registry.id,
            role_definition_name=ACR_PULL,
            principal_id=sp.object_id,
            skip_service_principal_aad_check=True,
        )
    )

    TerraformOutput(scope, "sp_client_id", value=app.client_id)
    return identity
