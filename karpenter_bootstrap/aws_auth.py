"""
aws_auth
--------

boto3 세션을 만들고, 부트스트랩에서 사용하는 서비스 클라이언트를 한 번에 준비한다.
리전은 AWS_REGION 설정을 우선하고, 없으면 세션(프로필/환경)에 설정된 값을 쓴다.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError

from .config import BootstrapConfig
from .errors import ResolutionError
from .logging_utils import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class AwsClients:
    region: str
    sts: Any
    eks: Any
    ssm: Any
    iam: Any
    ec2: Any


def create_session(cfg: BootstrapConfig) -> boto3.session.Session:
    try:
        return boto3.Session(
            profile_name=cfg.aws_profile,
            region_name=cfg.aws_region,
        )
    except BotoCoreError as e:
        raise ResolutionError("AWS 세션", str(e)) from e


def create_clients(cfg: BootstrapConfig) -> AwsClients:
    """
    리전이 결정되지 않으면 어떤 클라이언트도 만들지 않고 ResolutionError 를 던진다.
    """
    session = create_session(cfg)
    region = session.region_name
    if not region:
        raise ResolutionError(
            "AWS 리전",
            "리전을 결정할 수 없습니다. AWS_REGION 을 설정하거나 프로필에 region 을 지정하세요.",
        )

    logger.info("AWS 클라이언트 준비: region=%s profile=%s", region, cfg.aws_profile or "(default)")

    try:
        return AwsClients(
            region=region,
            sts=session.client("sts", region_name=region),
            eks=session.client("eks", region_name=region),
            ssm=session.client("ssm", region_name=region),
            iam=session.client("iam", region_name=region),
            ec2=session.client("ec2", region_name=region),
        )
    except BotoCoreError as e:
        raise ResolutionError("AWS 클라이언트 생성", str(e)) from e
