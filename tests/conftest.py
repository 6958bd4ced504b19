from pathlib import Path
from typing import Dict

import pytest

from utils.config_loader import build_config

REPO_ROOT = Path(__file__).resolve().parents[1]

BASE_VARS: Dict[str, str] = {
    "env": '"dev"',
    "location": '"westeurope"',
    "name_prefix": '"aksdemo"',
    "vnet_cidr": '"10.240.0.0/16"',
    "subnet_aks_cidr": '"10.240.0.0/20"',
    "subnet_ingress_cidr": '"10.240.16.0/24"',
    "aks_vm_size": '"Standard_D2s_v5"',
    "aks_node_count": "2",
}


@pytest.fixture
def vars_map() -> Dict[str, str]:
    return dict(BASE_VARS)


@pytest.fixture
def cfg(vars_map):
    return build_config(vars_map)


@pytest.fixture
def write_tfvars(tmp_path):
    def _write(values: Dict[str, str]) -> Path:
        path = tmp_path / "test.tfvars"
        path.write_text(
            "\n".join(f"{k} = {v}" for k, v in values.items()) + "\n", encoding="utf-8"
        )
        return path

    return _write
