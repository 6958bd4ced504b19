"""
CDKTF entrypoint for the Azure AKS infrastructure.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

from constructs import Construct
from cdktf import App, TerraformOutput, TerraformStack

from cdktf_cdktf_provider_azurerm.provider import AzurermProvider
from cdktf_cdktf_provider_azuread.provider import AzureadProvider
from cdktf_cdktf_provider_time.provider import TimeProvider

from stacks.azure_stack import build_stack_config, synth_config_json
from modules.network.network import provision_network
from modules.registry.registry import provision_registry
from modules.identity.identity import provision_identity
from modules.aks.aks import provision_aks
from iac_types import AzureInfrastructureConfig
from utils.config_loader import load_tfvars_config
from utils.validation import REQUIRED_ENV, missing_env, format_missing_env_message

STACK_ID = "azure-aks"


class AksStack(TerraformStack):
    """TerraformStack that wires Azure resources based on typed config."""

    def __init__(
        self, scope: Construct, id: str, config: AzureInfrastructureConfig
    ) -> None:
        super().__init__(scope, id)
        config = build_stack_config(config)

        # Providers
        AzurermProvider(self, "azurerm", features=[{}])
        AzureadProvider(self, "azuread")
        TimeProvider(self, "time")

        # Networking: NSGs -> VNet -> subnets
        rg, vnet, subnet_aks, _subnet_ingress, _nsgs = provision_network(
            scope=self, cfg=config
        )

        # Registry and identity are independent of each other until role assignment
        acr = provision_registry(scope=self, cfg=config, rg_name=rg.name)
        identity = provision_identity(scope=self, cfg=config, vnet=vnet, registry=acr)

        # AKS last; waits on role assignments
        provision_aks(
            scope=self,
            cfg=config,
            rg_name=rg.name,
            subnet_aks=subnet_aks,
            identity=identity,
        )

        # Surface a copy of the config used for traceability
        TerraformOutput(
            self, "config_json", value=json.dumps(synth_config_json(config), sort_keys=True)
        )


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]

    # Preflight: ensure required env vars are present before synthesizing
    missing = missing_env(env=os.environ, keys=REQUIRED_ENV)
    if missing:
        print(format_missing_env_message(missing), file=sys.stderr)
        sys.exit(2)

    try:
        cfg = load_tfvars_config(repo_root=repo_root)
    except (FileNotFoundError, KeyError, ValueError) as ex:
        print(f"Error: {ex}", file=sys.stderr)
        sys.exit(1)

    app = App()
    try:
        AksStack(app, STACK_ID, cfg)
    except ValueError as ex:
        # Surface a concise, friendly message instead of a long traceback
        print(f"Error: {ex}", file=sys.stderr)
        sys.exit(1)

    try:
        app.synth()
    except Exception as ex:  # noqa: BLE001 - present actionable error
        print("Synthesis failed.", file=sys.stderr)
        print(str(ex), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
