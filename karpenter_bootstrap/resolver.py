"""
resolver
--------

설정만으로는 알 수 없는 값(계정 ID, OIDC issuer, 아키텍처별 AMI)을
실제 AWS 상태에서 읽어온다. 읽기 전용이며 재시도하지 않는다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .aws_auth import AwsClients
from .config import BootstrapConfig
from .errors import ResolutionError
from .logging_utils import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

# arch -> EKS optimized AMI SSM 파라미터의 이미지 계열
AMI_FAMILY_BY_ARCH: Dict[str, str] = {
    "arm64": "amazon-linux-2-arm64",
    "amd64": "amazon-linux-2",
    "gpu": "amazon-linux-2-gpu",
}


def ami_parameter_name(k8s_version: str, family: str) -> str:
    return f"/aws/service/eks/optimized-ami/{k8s_version}/{family}/recommended/image_id"


def strip_scheme(url: str) -> str:
    """`https://oidc.eks...` -> `oidc.eks...`"""
    _, sep, rest = url.partition("//")
    return rest if sep else url


@dataclass(frozen=True)
class DerivedValues:
    region: str
    account_id: str
    oidc_issuer_url: str
    ami_id_by_arch: Mapping[str, str] = field(default_factory=dict)

    @property
    def oidc_issuer_host(self) -> str:
        return strip_scheme(self.oidc_issuer_url)


def _query(name: str, fn: Callable[[], T]) -> T:
    try:
        return fn()
    except ClientError as e:
        err = e.response.get("Error", {})
        raise ResolutionError(name, f"{err.get('Code', '?')}: {err.get('Message', e)}") from e
    except BotoCoreError as e:
        raise ResolutionError(name, str(e)) from e
    except (KeyError, IndexError, TypeError) as e:
        raise ResolutionError(name, f"응답에 필요한 필드가 없습니다 ({e!r})") from e


def resolve_account_id(sts: Any) -> str:
    return _query("sts:GetCallerIdentity", lambda: str(sts.get_caller_identity()["Account"]))


def resolve_oidc_issuer(eks: Any, cluster_name: str) -> str:
    def _issuer() -> str:
        issuer = eks.describe_cluster(name=cluster_name)["cluster"]["identity"]["oidc"]["issuer"]
        if not issuer:
            raise KeyError("cluster.identity.oidc.issuer")
        return str(issuer)

    return _query(f"eks:DescribeCluster ({cluster_name})", _issuer)


def resolve_ami_ids(ssm: Any, k8s_version: str) -> Dict[str, str]:
    ami_ids: Dict[str, str] = {}
    for arch, family in AMI_FAMILY_BY_ARCH.items():
        name = ami_parameter_name(k8s_version, family)
        ami_ids[arch] = _query(
            f"ssm:GetParameter ({name})",
            lambda name=name: str(ssm.get_parameter(Name=name)["Parameter"]["Value"]),
        )
        logger.debug("AMI %s: %s", arch, ami_ids[arch])
    return ami_ids


def resolve_derived_values(cfg: BootstrapConfig, clients: AwsClients) -> DerivedValues:
    """
    하나라도 실패하면 ResolutionError 로 전체 실행을 중단한다.
    이후 단계가 모두 이 값들에 의존하기 때문이다.
    """
    logger.info("파생값 조회: cluster=%s region=%s", cfg.cluster_name, clients.region)

    account_id = resolve_account_id(clients.sts)
    oidc_issuer = resolve_oidc_issuer(clients.eks, cfg.cluster_name)
    ami_ids = resolve_ami_ids(clients.ssm, cfg.k8s_version)

    derived = DerivedValues(
        region=clients.region,
        account_id=account_id,
        oidc_issuer_url=oidc_issuer,
        ami_id_by_arch=ami_ids,
    )
    logger.info(
        "파생값: account=%s oidc=%s amis=%s",
        derived.account_id,
        derived.oidc_issuer_host,
        dict(derived.ami_id_by_arch),
    )
    return derived
