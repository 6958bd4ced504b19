import json
import os
import shutil
import subprocess
from dataclasses import replace

import pytest

from scripts.commands import (
    az_command_plan,
    create_sp_command,
    render_plan,
    role_definition_json,
)


def _index(plan, *prefix):
    for i, cmd in enumerate(plan):
        if tuple(cmd[: len(prefix)]) == prefix:
            return i
    raise AssertionError(f"{' '.join(prefix)} not in plan")


def test_plan_is_leaves_first(cfg):
    plan = az_command_plan(cfg)
    assert plan[0][:3] == ["az", "group", "create"]
    nsg = _index(plan, "az", "network", "nsg", "create")
    vnet = _index(plan, "az", "network", "vnet", "create")
    subnet = _index(plan, "az", "network", "vnet", "subnet", "create")
    acr = _index(plan, "az", "acr", "create")
    sp = _index(plan, "az", "ad", "sp", "create-for-rbac")
    role_def = _index(plan, "az", "role", "definition", "create")
    assignment = _index(plan, "az", "role", "assignment", "create")
    aks = _index(plan, "az", "aks", "create")
    assert nsg < vnet < subnet < acr < sp < role_def < assignment < aks
    assert aks == len(plan) - 1


def test_subnets_reference_nsgs(cfg):
    subnets = [c for c in az_command_plan(cfg) if c[:5] == ["az", "network", "vnet", "subnet", "create"]]
    assert len(subnets) == 2
    for cmd in subnets:
        nsg = cmd[cmd.index("--nsg") + 1]
        assert nsg in {n.name for n in cfg.vnet_config.network_security_groups.values()}


def test_nsg_rules_included(cfg):
    rules = [c for c in az_command_plan(cfg) if c[:5] == ["az", "network", "nsg", "rule", "create"]]
    assert len(rules) == 4


def test_builtin_role_when_custom_disabled(cfg):
    cfg = replace(cfg, sp_config=replace(cfg.sp_config, use_custom_role=False))
    plan = az_command_plan(cfg)
    assert not any(c[:4] == ["az", "role", "definition", "create"] for c in plan)
    roles = [c[c.index("--role") + 1] for c in plan if c[:4] == ["az", "role", "assignment", "create"]]
    assert roles == ["Network Contributor", "AcrPull"]


def test_known_principal_skips_creation(cfg):
    plan = az_command_plan(
        cfg,
        subscription_id="sub-1",
        sp_client_id="app-1",
        sp_secret="s3cret",
        sp_object_id="obj-1",
    )
    assert not any(c[:4] == ["az", "ad", "sp", "create-for-rbac"] for c in plan)
    aks = plan[-1]
    assert aks[aks.index("--service-principal") + 1] == "app-1"
    assert aks[aks.index("--client-secret") + 1] == "s3cret"
    assert aks[aks.index("--vnet-subnet-id") + 1].startswith("/subscriptions/sub-1/")
    assignments = [c for c in plan if c[:4] == ["az", "role", "assignment", "create"]]
    assert all(c[c.index("--assignee-object-id") + 1] == "obj-1" for c in assignments)


def test_create_sp_command(cfg):
    cmd = create_sp_command(cfg)
    assert cmd[:4] == ["az", "ad", "sp", "create-for-rbac"]
    assert cmd[cmd.index("--name") + 1] == "aksdemo-dev-sp"
    assert cmd[cmd.index("--years") + 1] == "1"


def test_render_plan_keeps_variables_expandable(cfg):
    script = render_plan(cfg)
    assert script.startswith("#!/usr/bin/env bash\nset -euo pipefail\n")
    assert '--service-principal "$SP_APP_ID"' in script
    assert '"/subscriptions/$SUBSCRIPTION_ID/resourceGroups/aksdemo-dev-rg' in script
    assert "cat > aksdemo-dev-aks-least-privilege.json <<EOF" in script


def test_role_definition_json(cfg):
    doc = role_definition_json(cfg, "sub-1")
    assert doc["Name"] == "aksdemo-dev-aks-least-privilege"
    assert doc["AssignableScopes"] == ["/subscriptions/sub-1"]
    assert "Microsoft.Network/virtualNetworks/subnets/join/action" in doc["Actions"]


STUB_AZ = """#!/usr/bin/env bash
echo "$*" >> "$AZ_LOG"
case "$*" in
  "account show"*) echo sub-123 ;;
  "ad sp create-for-rbac"*) printf 'app-123\\tp4ss~word\\n' ;;
  "ad sp show"*) echo obj-123 ;;
esac
"""


def _run_script(script, tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    stub = bin_dir / "az"
    stub.write_text(STUB_AZ, encoding="utf-8")
    stub.chmod(0o755)
    path = tmp_path / "provision.sh"
    path.write_text(script, encoding="utf-8")
    log = tmp_path / "az.log"
    env = {k: v for k, v in os.environ.items() if k != "SUBSCRIPTION_ID"}
    env["PATH"] = f"{bin_dir}{os.pathsep}{env.get('PATH', '')}"
    env["AZ_LOG"] = str(log)
    result = subprocess.run(
        ["bash", str(path)], cwd=tmp_path, env=env, capture_output=True, text=True
    )
    calls = log.read_text(encoding="utf-8").splitlines() if log.exists() else []
    return result, calls


@pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")
def test_rendered_script_runs_end_to_end(cfg, tmp_path):
    result, calls = _run_script(render_plan(cfg), tmp_path)
    assert result.returncode == 0, result.stderr

    assert calls[0] == "account show --query id -o tsv"
    assert calls[1].startswith("group create")
    aks = calls[-1]
    assert aks.startswith("aks create")
    assert "--service-principal app-123" in aks
    assert "--client-secret p4ss~word" in aks
    assert "--vnet-subnet-id /subscriptions/sub-123/resourceGroups/aksdemo-dev-rg/" in aks

    assignments = [c for c in calls if c.startswith("role assignment create")]
    assert len(assignments) == 2
    assert all("--assignee-object-id obj-123" in c for c in assignments)
    assert "role definition create --role-definition @aksdemo-dev-aks-least-privilege.json" in calls

    role_doc = json.loads(
        (tmp_path / "aksdemo-dev-aks-least-privilege.json").read_text(encoding="utf-8")
    )
    assert role_doc["AssignableScopes"] == ["/subscriptions/sub-123"]


@pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")
def test_rendered_script_with_builtin_role(cfg, tmp_path):
    cfg = replace(cfg, sp_config=replace(cfg.sp_config, use_custom_role=False))
    script = render_plan(cfg)
    assert "<<EOF" not in script
    result, calls = _run_script(script, tmp_path)
    assert result.returncode == 0, result.stderr
    assert not any(c.startswith("role definition create") for c in calls)
    assert any("--role Network Contributor" in c for c in calls)
