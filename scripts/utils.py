from __future__ import annotations

import json
import os
import shutil
import threading
import subprocess
from pathlib import Path
from typing import Dict, List, Optional


class CmdError(Exception):
    pass


SECRET_FLAGS = ("--client-secret", "--password", "--value")
SECRET_PARAMS = ("servicePrincipalClientSecret=",)


def redact(cmd: List[str]) -> str:
    shown: List[str] = []
    for i, arg in enumerate(cmd):
        if i > 0 and cmd[i - 1] in SECRET_FLAGS:
            shown.append("***")
        elif arg.startswith(SECRET_PARAMS):
            shown.append(arg.split("=", 1)[0] + "=***")
        else:
            shown.append(arg)
    return " ".join(shown)


def run(cmd: List[str], cwd: Optional[str], echo: bool = True) -> str:
    """Execute a command, stream both pipes, and return ONLY stdout text.

    Important: Some callers JSON-parse the return; never mix stderr into it.
    """
    print(f"Running: {redact(cmd)}")
    proc = subprocess.Popen(
        cmd,
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        bufsize=1,
    )

    stdout_buf: list[str] = []

    def pump(pipe, tag: str) -> None:
        try:
            for line in iter(pipe.readline, ""):
                if not line:
                    continue
                line = line.rstrip()
                # Echo to console
                if echo:
                    print(line, flush=True)
                if tag == "stdout":
                    stdout_buf.append(line)
        finally:
            pipe.close()

    t_out = threading.Thread(target=pump, args=(proc.stdout, "stdout"), daemon=True)
    t_err = threading.Thread(target=pump, args=(proc.stderr, "stderr"), daemon=True)
    t_out.start()
    t_err.start()
    rc = proc.wait()
    t_out.join()
    t_err.join()

    out_text = "\n".join(stdout_buf).strip()
    if rc != 0:
        raise CmdError(f"Command failed ({rc}): {redact(cmd)}\nSTDOUT:\n{out_text}")
    return out_text


def _resolve_az_exe() -> str:
    # az is a .cmd shim on Windows
    exe = shutil.which("az") or shutil.which("az.cmd")
    if not exe:
        raise CmdError("Azure CLI not found on PATH; install it from https://aka.ms/azcli")
    return exe


def az(args: List[str], echo: bool = True) -> str:
    return run([_resolve_az_exe(), *args], cwd=None, echo=echo)


def cdktf(project_dir: Path, args: List[str]) -> str:
    return run(["cdktf", *args], cwd=str(project_dir))


def run_az_commands(commands: List[List[str]]) -> None:
    """Run an ordered az command list, stopping at the first failure."""
    for cmd in commands:
        if not cmd or cmd[0] != "az":
            raise CmdError(f"Refusing to run non-az command: {' '.join(cmd)}")
        az(cmd[1:])


def create_service_principal(create_cmd: List[str]) -> Dict[str, str]:
    """Run create-for-rbac and return appId, password, tenant and objectId."""
    # Output contains the password; keep it off the console
    created = json.loads(az(create_cmd[1:], echo=False))
    object_id = az(
        ["ad", "sp", "show", "--id", created["appId"], "--query", "id", "-o", "tsv"],
        echo=False,
    ).strip()
    return {
        "appId": created["appId"],
        "password": created["password"],
        "tenant": created.get("tenant", ""),
        "objectId": object_id,
    }


def current_subscription_id() -> str:
    sub = os.getenv("ARM_SUBSCRIPTION_ID")
    if sub:
        return sub
    return az(["account", "show", "--query", "id", "-o", "tsv"], echo=False).strip()


def arm_deploy(
    resource_group: str,
    template_file: Path,
    parameters: Dict[str, str],
    deployment_name: str,
) -> str:
    args = [
        "deployment",
        "group",
        "create",
        "-g",
        resource_group,
        "-n",
        deployment_name,
        "--template-file",
        str(template_file),
        "-o",
        "json",
    ]
    if parameters:
        args.append("--parameters")
        args.extend(f"{k}={v}" for k, v in parameters.items())
    return az(args, echo=False)


def aks_show(resource_group: str, cluster_name: str) -> Dict[str, str]:
    return json.loads(
        az(
            [
                "aks",
                "show",
                "-g",
                resource_group,
                "-n",
                cluster_name,
                "--query",
                "{name:name, powerState:powerState.code, provisioningState:provisioningState, kubernetesVersion:kubernetesVersion, fqdn:fqdn}",
                "-o",
                "json",
            ]
        )
    )


def aks_get_credentials(resource_group: str, cluster_name: str, admin: bool) -> str:
    args = ["aks", "get-credentials", "-g", resource_group, "-n", cluster_name, "--overwrite-existing"]
    if admin:
        args.append("--admin")
    return az(args)
