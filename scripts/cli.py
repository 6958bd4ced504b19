from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

REPO_ROOT = Path(__file__).resolve().parents[1]
INFRA_DIR = REPO_ROOT / "infra"
# infra/ modules import each other top-level, as they do under `cdktf synth`
if str(INFRA_DIR) not in sys.path:
    sys.path.insert(0, str(INFRA_DIR))

from arm.template import deployment_order, write_template  # noqa: E402
from iac_types import AzureInfrastructureConfig  # noqa: E402
from stacks.azure_stack import build_stack_config  # noqa: E402
from utils.config_loader import load_tfvars_config  # noqa: E402

from .commands import (  # noqa: E402
    az_command_plan,
    create_sp_command,
    render_plan,
    role_definition_json,
)
from .utils import (  # noqa: E402
    CmdError,
    aks_get_credentials,
    aks_show,
    arm_deploy,
    az,
    cdktf,
    create_service_principal,
    current_subscription_id,
    run_az_commands,
)


def load_config(args: argparse.Namespace) -> AzureInfrastructureConfig:
    cfg = load_tfvars_config(repo_root=REPO_ROOT, tfvars_file=getattr(args, "tfvars", None))
    return build_stack_config(cfg)


def _project_dir(args: argparse.Namespace) -> Path:
    project = Path(args.project_dir)
    if not project.exists():
        raise CmdError(f"Project directory not found: {project}")
    return project


def infra_synth(args: argparse.Namespace) -> None:
    project = _project_dir(args)
    print("Synthesizing CDKTF...")
    cdktf(project, ["synth"])
    print("Synthesis completed.")


def infra_deploy(args: argparse.Namespace) -> None:
    project = _project_dir(args)
    print("Synthesizing CDKTF...")
    cdktf(project, ["get"])  # ensure providers
    cdktf(project, ["synth"])  # generate JSON tf
    print("Deploying CDKTF...")
    cdktf(project, ["deploy", "--auto-approve"])
    print("CDKTF deploy completed.")


def infra_destroy(args: argparse.Namespace) -> None:
    project = _project_dir(args)
    print("Destroying CDKTF-managed infrastructure...")
    cdktf(project, ["destroy", "--auto-approve"])
    print("Destroy completed.")


def arm_export(args: argparse.Namespace) -> None:
    cfg = load_config(args)
    out = Path(args.output)
    template = write_template(cfg, out)
    print(f"Wrote ARM template to {out}")
    print("Deployment order:")
    for i, label in enumerate(deployment_order(template), start=1):
        print(f"  {i}. {label}")


def arm_deploy_cmd(args: argparse.Namespace) -> None:
    cfg = load_config(args)
    out = Path(args.output)
    write_template(cfg, out)
    az(["group", "create", "--name", cfg.resource_group_name, "--location", cfg.location])
    params = {
        "servicePrincipalClientId": args.sp_client_id,
        "servicePrincipalObjectId": args.sp_object_id,
        "servicePrincipalClientSecret": args.sp_secret,
    }
    if args.network_role_id:
        params["networkRoleDefinitionId"] = args.network_role_id
    result = json.loads(
        arm_deploy(cfg.resource_group_name, out, params, deployment_name=args.deployment_name)
    )
    outputs = result.get("properties", {}).get("outputs", {})
    for key, value in outputs.items():
        print(f"{key}: {value.get('value')}")


def cli_plan(args: argparse.Namespace) -> None:
    cfg = load_config(args)
    if not args.execute:
        print(render_plan(cfg), end="")
        return

    subscription_id = current_subscription_id()
    if cfg.sp_config.use_custom_role:
        role_file = Path(f"{cfg.sp_config.custom_role_name}.json")
        role_file.write_text(
            json.dumps(role_definition_json(cfg, subscription_id), indent=2), encoding="utf-8"
        )
        print(f"Wrote custom role definition to {role_file}")
    print("Creating service principal...")
    sp = create_service_principal(create_sp_command(cfg))
    commands = az_command_plan(
        cfg,
        subscription_id=subscription_id,
        sp_client_id=sp["appId"],
        sp_secret=sp["password"],
        sp_object_id=sp["objectId"],
    )
    run_az_commands(commands)
    print("CLI provisioning completed.")


def get_credentials(args: argparse.Namespace) -> None:
    aks_get_credentials(args.resource_group, args.cluster_name, admin=args.admin)


def diagnose(args: argparse.Namespace) -> None:
    rg = args.resource_group
    aks = args.cluster_name
    print("=== AKS Diagnostics ===")
    try:
        info = aks_show(rg, aks)
        print(
            f"AKS: {info['name']} | Power: {info['powerState']} | State: {info['provisioningState']} | K8s: {info['kubernetesVersion']} | FQDN: {info['fqdn']}"
        )
    except CmdError as e:
        print(f"AKS info error: {e}", file=sys.stderr)
        raise


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aks-infra", description="AKS infrastructure CLI (CDKTF, ARM and az)"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    isyn = sub.add_parser("infra-synth", help="Synthesize Terraform JSON via CDKTF")
    isyn.add_argument("--project-dir", default="infra")
    isyn.set_defaults(func=infra_synth)

    idep = sub.add_parser("infra-deploy", help="Deploy infrastructure via CDKTF")
    idep.add_argument("--project-dir", default="infra")
    idep.set_defaults(func=infra_deploy)

    ides = sub.add_parser("infra-destroy", help="Destroy infrastructure via CDKTF")
    ides.add_argument("--project-dir", default="infra")
    ides.set_defaults(func=infra_destroy)

    aexp = sub.add_parser("arm-export", help="Write the equivalent ARM template")
    aexp.add_argument("--tfvars", help="tfvars file relative to the repo root")
    aexp.add_argument("--output", default="arm/azuredeploy.json")
    aexp.set_defaults(func=arm_export)

    adep = sub.add_parser("arm-deploy", help="Deploy the ARM template with az")
    adep.add_argument("--tfvars", help="tfvars file relative to the repo root")
    adep.add_argument("--output", default="arm/azuredeploy.json")
    adep.add_argument("--deployment-name", default="aks-infra")
    adep.add_argument("--sp-client-id", required=True)
    adep.add_argument("--sp-object-id", required=True)
    adep.add_argument("--sp-secret", required=True)
    adep.add_argument(
        "--network-role-id",
        help="Role definition GUID granted on the VNet (default: Network Contributor)",
    )
    adep.set_defaults(func=arm_deploy_cmd)

    plan = sub.add_parser("cli-plan", help="Print the equivalent az command sequence")
    plan.add_argument("--tfvars", help="tfvars file relative to the repo root")
    plan.add_argument(
        "--execute", action="store_true", help="Run the commands instead of printing them"
    )
    plan.set_defaults(func=cli_plan)

    cred = sub.add_parser("get-credentials", help="Merge cluster credentials into kubeconfig")
    cred.add_argument("--resource-group", required=True)
    cred.add_argument("--cluster-name", required=True)
    cred.add_argument("--admin", action="store_true")
    cred.set_defaults(func=get_credentials)

    diag = sub.add_parser("diagnose", help="Show cluster status")
    diag.add_argument("--resource-group", required=True)
    diag.add_argument("--cluster-name", required=True)
    diag.set_defaults(func=diagnose)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        args.func(args)
    except (CmdError, FileNotFoundError, KeyError, ValueError) as ex:
        print(f"Error: {ex}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
