from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional, List

from dotenv import load_dotenv

from .errors import ConfigError


ENV_FILES_DEFAULT_ORDER = [".env", ".env.karpenter"]

REQUIRED_KEYS = [
    "KARPENTER_NAMESPACE",
    "CLUSTER_NAME",
    "AWS_PARTITION",
    "K8S_VERSION",
]

# aws, aws-cn, aws-us-gov, aws-iso-b, aws-eusc ...
_PARTITION_RE = re.compile(r"^aws(-[a-z]+)*$")

_K8S_VERSION_RE = re.compile(r"^\d+\.\d+$")


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None,
                   extra_file: Optional[str] = None) -> List[str]:
    """
    주어진 디렉토리에서 설정 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓰고, extra_file(--config) 이 가장 마지막이다.

    Returns:
        실제로 로드된 파일 경로 목록
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    paths = [os.path.join(base_dir, name) for name in order]
    loaded: List[str] = []
    for path in paths:
        if os.path.exists(path):
            load_dotenv(path, override=True)
            loaded.append(path)

    if extra_file:
        if not os.path.isfile(extra_file):
            raise ConfigError(f"설정 파일을 찾을 수 없습니다: {extra_file}")
        load_dotenv(extra_file, override=True)
        loaded.append(extra_file)

    return loaded


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def _get_optional(name: str, *fallbacks: str) -> Optional[str]:
    for key in (name, *fallbacks):
        raw = os.getenv(key)
        if raw:
            return raw.strip()
    return None


@dataclass(frozen=True)
class BootstrapConfig:
    # 필수
    karpenter_namespace: str
    cluster_name: str
    aws_partition: str
    k8s_version: str

    # 선택
    service_account: str = "karpenter"
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None
    output_dir: str = "."
    tag_roles: bool = False

    @classmethod
    def from_env(cls) -> "BootstrapConfig":
        missing: List[str] = []
        def req(name: str) -> str:
            val = (os.getenv(name) or "").strip()
            if not val:
                missing.append(name)
            return val

        values = {name: req(name) for name in REQUIRED_KEYS}

        if missing:
            raise ConfigError(
                "필수 설정이 누락되었습니다: " + ", ".join(sorted(set(missing)))
            )

        if not _PARTITION_RE.match(values["AWS_PARTITION"]):
            raise ConfigError(
                f"AWS_PARTITION 값이 올바르지 않습니다: {values['AWS_PARTITION']} "
                "(aws 또는 aws-<suffix> 형식이어야 합니다)"
            )

        if not _K8S_VERSION_RE.match(values["K8S_VERSION"]):
            raise ConfigError(
                f"K8S_VERSION 은 <major>.<minor> 형식이어야 합니다: {values['K8S_VERSION']}"
            )

        return cls(
            karpenter_namespace=values["KARPENTER_NAMESPACE"],
            cluster_name=values["CLUSTER_NAME"],
            aws_partition=values["AWS_PARTITION"],
            k8s_version=values["K8S_VERSION"],
            service_account=_get_optional("KARPENTER_SERVICE_ACCOUNT") or "karpenter",
            aws_region=_get_optional("AWS_REGION", "AWS_DEFAULT_REGION"),
            aws_profile=_get_optional("AWS_PROFILE"),
            output_dir=_get_optional("POLICY_OUTPUT_DIR") or ".",
            tag_roles=_get_bool("IAM_TAG_ROLES", False),
        )
