import json
from dataclasses import replace

import pytest
from cdktf import Testing

from cdktf_cdktf_provider_azuread.application import Application
from cdktf_cdktf_provider_azuread.service_principal_password import (
    ServicePrincipalPassword,
)
from cdktf_cdktf_provider_azurerm.container_registry import ContainerRegistry
from cdktf_cdktf_provider_azurerm.kubernetes_cluster import KubernetesCluster
from cdktf_cdktf_provider_azurerm.network_security_group import NetworkSecurityGroup
from cdktf_cdktf_provider_azurerm.network_security_rule import NetworkSecurityRule
from cdktf_cdktf_provider_azurerm.role_assignment import RoleAssignment
from cdktf_cdktf_provider_azurerm.role_definition import RoleDefinition
from cdktf_cdktf_provider_azurerm.subnet import Subnet
from cdktf_cdktf_provider_azurerm.subnet_network_security_group_association import (
    SubnetNetworkSecurityGroupAssociation,
)

import main
from main import AksStack


def _synth(cfg) -> str:
    app = Testing.app()
    stack = AksStack(app, "test", cfg)
    return Testing.synth(stack)


def _resources(synthesized: str, type_name: str) -> dict:
    return json.loads(synthesized)["resource"].get(type_name, {})


def test_network_resources(cfg):
    synthesized = _synth(cfg)
    assert len(_resources(synthesized, NetworkSecurityGroup.TF_RESOURCE_TYPE)) == 2
    assert len(_resources(synthesized, NetworkSecurityRule.TF_RESOURCE_TYPE)) == 4
    assert len(_resources(synthesized, SubnetNetworkSecurityGroupAssociation.TF_RESOURCE_TYPE)) == 2
    assert Testing.to_have_resource_with_properties(
        synthesized,
        Subnet.TF_RESOURCE_TYPE,
        {"name": "aksdemo-dev-vnet-ingress", "address_prefixes": ["10.240.16.0/24"]},
    )
    for subnet in _resources(synthesized, Subnet.TF_RESOURCE_TYPE).values():
        assert any(d.startswith("azurerm_virtual_network.") for d in subnet["depends_on"])


def test_registry(cfg):
    assert Testing.to_have_resource_with_properties(
        _synth(cfg),
        ContainerRegistry.TF_RESOURCE_TYPE,
        {"name": "aksdemodevacr", "sku": "Standard", "admin_enabled": False},
    )


def test_identity_chain(cfg):
    synthesized = _synth(cfg)
    assert Testing.to_have_resource_with_properties(
        synthesized, Application.TF_RESOURCE_TYPE, {"display_name": "aksdemo-dev-sp"}
    )
    (password,) = _resources(synthesized, ServicePrincipalPassword.TF_RESOURCE_TYPE).values()
    assert "azuread_service_principal." in password["service_principal_id"]
    assert "time_rotating." in password["rotate_when_changed"]["rotation"]
    assert "timeadd(time_rotating." in password["end_date"]
    assert "rotation_rfc3339" in password["end_date"]


def test_custom_role_assigned_on_vnet(cfg):
    synthesized = _synth(cfg)
    (role,) = _resources(synthesized, RoleDefinition.TF_RESOURCE_TYPE).values()
    assert role["name"] == "aksdemo-dev-aks-least-privilege"
    assert "data.azurerm_subscription." in role["scope"]
    assignments = list(_resources(synthesized, RoleAssignment.TF_RESOURCE_TYPE).values())
    assert len(assignments) == 2
    network = next(a for a in assignments if "azurerm_virtual_network." in a["scope"])
    assert "azurerm_role_definition." in network["role_definition_id"]
    acr = next(a for a in assignments if "azurerm_container_registry." in a["scope"])
    assert acr["role_definition_name"] == "AcrPull"


def test_builtin_role_when_custom_disabled(cfg):
    cfg = replace(cfg, sp_config=replace(cfg.sp_config, use_custom_role=False))
    synthesized = _synth(cfg)
    assert _resources(synthesized, RoleDefinition.TF_RESOURCE_TYPE) == {}
    assert Testing.to_have_resource_with_properties(
        synthesized,
        RoleAssignment.TF_RESOURCE_TYPE,
        {"role_definition_name": "Network Contributor"},
    )


def test_cluster_uses_service_principal_and_waits_for_roles(cfg):
    synthesized = _synth(cfg)
    (cluster,) = _resources(synthesized, KubernetesCluster.TF_RESOURCE_TYPE).values()
    assert cluster["name"] == "aksdemo-dev-aks"
    assert "azuread_application." in cluster["service_principal"]["client_id"]
    assert "azuread_service_principal_password." in cluster["service_principal"]["client_secret"]
    assert "azurerm_subnet." in cluster["default_node_pool"]["vnet_subnet_id"]
    assert cluster["network_profile"]["network_plugin"] == "azure"
    assert cluster["network_profile"]["dns_service_ip"] == "10.0.0.10"
    assert sum(d.startswith("azurerm_role_assignment.") for d in cluster["depends_on"]) == 2
    assert "linux_profile" not in cluster


def test_invalid_config_fails_before_synth(cfg):
    cfg = replace(cfg, aks_config=replace(cfg.aks_config, node_count=0))
    with pytest.raises(ValueError, match="node_count"):
        AksStack(Testing.app(), "test", cfg)


def test_outputs(cfg):
    outputs = json.loads(_synth(cfg))["output"]
    assert {"resource_group", "virtual_network", "acr_login_server", "aks_name", "kube_config", "config_json"} <= set(outputs)
    assert outputs["kube_config"]["sensitive"] is True


def test_main_preflight_requires_arm_env(monkeypatch, capsys):
    monkeypatch.delenv("ARM_SUBSCRIPTION_ID", raising=False)
    monkeypatch.delenv("ARM_TENANT_ID", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        main.main()
    assert excinfo.value.code == 2
    assert "ARM_TENANT_ID" in capsys.readouterr().err
