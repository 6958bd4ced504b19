import json
from dataclasses import replace

import pytest

from arm.template import (
    ACR_PULL_ID,
    AKS_TYPE,
    NSG_TYPE,
    ROLE_ASSIGNMENT_TYPE,
    SCHEMA,
    VNET_TYPE,
    build_template,
    deployment_order,
    resource_ref,
    write_template,
)


def _by_type(template, type_name):
    return [r for r in template["resources"] if r["type"] == type_name]


def test_template_header(cfg):
    template = build_template(cfg)
    assert template["$schema"] == SCHEMA
    assert template["contentVersion"] == "1.0.0.0"
    assert template["parameters"]["servicePrincipalClientSecret"]["type"] == "securestring"
    assert template["parameters"]["location"]["defaultValue"] == "westeurope"


def test_nsgs_carry_rules(cfg):
    nsgs = _by_type(build_template(cfg), NSG_TYPE)
    assert [n["name"] for n in nsgs] == ["aksdemo-dev-vnet-nsg-aks", "aksdemo-dev-vnet-nsg-ingress"]
    ingress_rules = nsgs[1]["properties"]["securityRules"]
    assert {r["properties"]["destinationPortRange"] for r in ingress_rules} == {"80", "443"}


def test_vnet_binds_subnets_to_nsgs(cfg):
    template = build_template(cfg)
    (vnet,) = _by_type(template, VNET_TYPE)
    nsg_refs = [resource_ref(n) for n in _by_type(template, NSG_TYPE)]
    assert vnet["dependsOn"] == nsg_refs
    subnets = {s["name"]: s["properties"] for s in vnet["properties"]["subnets"]}
    assert subnets["aksdemo-dev-vnet-aks"]["addressPrefix"] == "10.240.0.0/20"
    assert subnets["aksdemo-dev-vnet-aks"]["networkSecurityGroup"]["id"] == (
        "[resourceId('Microsoft.Network/networkSecurityGroups', 'aksdemo-dev-vnet-nsg-aks')]"
    )
    assert subnets["aksdemo-dev-vnet-ingress"]["networkSecurityGroup"]["id"] == nsg_refs[1]


def test_role_assignments(cfg):
    template = build_template(cfg)
    network, acr_pull = _by_type(template, ROLE_ASSIGNMENT_TYPE)
    assert network["scope"] == "Microsoft.Network/virtualNetworks/aksdemo-dev-vnet"
    assert "parameters('networkRoleDefinitionId')" in network["properties"]["roleDefinitionId"]
    assert acr_pull["scope"] == "Microsoft.ContainerRegistry/registries/aksdemodevacr"
    assert ACR_PULL_ID in acr_pull["properties"]["roleDefinitionId"]
    assert network["name"] != acr_pull["name"]
    assert resource_ref(network).startswith("[extensionResourceId(resourceId(")


def test_cluster_waits_for_role_assignments(cfg):
    template = build_template(cfg)
    (aks,) = _by_type(template, AKS_TYPE)
    role_refs = {resource_ref(r) for r in _by_type(template, ROLE_ASSIGNMENT_TYPE)}
    assert role_refs <= set(aks["dependsOn"])
    props = aks["properties"]
    assert props["servicePrincipalProfile"]["clientId"] == "[parameters('servicePrincipalClientId')]"
    assert props["networkProfile"]["networkPlugin"] == "azure"
    assert props["agentPoolProfiles"][0]["vnetSubnetID"] == (
        "[resourceId('Microsoft.Network/virtualNetworks/subnets', "
        "'aksdemo-dev-vnet', 'aksdemo-dev-vnet-aks')]"
    )
    assert "kubernetesVersion" not in props
    assert "linuxProfile" not in props


def test_cluster_optional_properties(cfg):
    cfg = replace(
        cfg,
        aks_config=replace(
            cfg.aks_config, kubernetes_version="1.29.2", ssh_public_key="ssh-rsa AAAA"
        ),
    )
    (aks,) = _by_type(build_template(cfg), AKS_TYPE)
    assert aks["properties"]["kubernetesVersion"] == "1.29.2"
    assert aks["properties"]["linuxProfile"]["ssh"]["publicKeys"] == [{"keyData": "ssh-rsa AAAA"}]


def test_deployment_order_leaves_first(cfg):
    order = deployment_order(build_template(cfg))
    types = [label.split("/", 2)[0] + "/" + label.split("/", 2)[1] for label in order]
    assert types == [
        NSG_TYPE,
        NSG_TYPE,
        VNET_TYPE,
        "Microsoft.ContainerRegistry/registries",
        ROLE_ASSIGNMENT_TYPE,
        ROLE_ASSIGNMENT_TYPE,
        AKS_TYPE,
    ]


def test_deployment_order_rejects_unknown_dependency():
    template = {
        "resources": [
            {"type": VNET_TYPE, "name": "v", "dependsOn": ["[resourceId('X/y', 'nope')]"]}
        ]
    }
    with pytest.raises(ValueError, match="unknown resource"):
        deployment_order(template)


def test_deployment_order_rejects_cycle():
    a = {"type": NSG_TYPE, "name": "a"}
    b = {"type": NSG_TYPE, "name": "b"}
    a["dependsOn"] = [resource_ref(b)]
    b["dependsOn"] = [resource_ref(a)]
    with pytest.raises(ValueError, match="cycle"):
        deployment_order({"resources": [a, b]})


def test_write_template(cfg, tmp_path):
    path = tmp_path / "out" / "azuredeploy.json"
    template = write_template(cfg, path)
    assert json.loads(path.read_text(encoding="utf-8")) == template
