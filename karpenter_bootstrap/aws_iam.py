"""
aws_iam
-------

IAM 역할 생성, 관리형 정책 연결, 인라인 정책 upsert 를 담당하는 모듈.

- 역할 생성은 "처음 적용한 것이 이긴다": 이미 있으면 성공으로 보고 trust policy 는 맞추지 않는다.
- 관리형 정책 연결은 중복이어도 no-op.
- 인라인 정책은 같은 이름으로 덮어쓴다 (유일하게 additive 가 아닌 단계).
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConflictIgnorable, ProvisioningError
from .logging_utils import get_logger
from .policies import PolicyDocument, render


logger = get_logger(__name__)

CONFLICT_CODES = {"EntityAlreadyExists"}

CLUSTER_TAG_KEY = "karpenter.sh/cluster"


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


def _iam_call(operation: str, resource: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
    """
    IAM 쓰기 호출 래퍼.
    "이미 존재함" 계열만 ConflictIgnorable 로, 나머지는 ProvisioningError 로 바꾼다.
    """
    logger.debug("IAM 호출: %s (%s)", operation, resource)
    try:
        return fn(**kwargs)
    except ClientError as e:
        code = _error_code(e)
        message = str(e.response.get("Error", {}).get("Message", e))
        if code in CONFLICT_CODES:
            raise ConflictIgnorable(operation, resource, message, code=code) from e
        raise ProvisioningError(operation, resource, message, code=code or None) from e
    except BotoCoreError as e:
        raise ProvisioningError(operation, resource, str(e)) from e


def ensure_role(iam: Any, name: str, trust_policy: PolicyDocument,
                cluster_name: Optional[str] = None) -> bool:
    """
    역할을 생성한다. 이미 존재하면 그대로 두고 False 를 반환한다.
    cluster_name 을 주면 생성 시 태그도 붙이므로 iam:TagRole 권한이 추가로 필요하다.
    """
    kwargs: Dict[str, Any] = {
        "RoleName": name,
        "AssumeRolePolicyDocument": render(trust_policy),
    }
    if cluster_name:
        kwargs["Tags"] = [{"Key": CLUSTER_TAG_KEY, "Value": cluster_name}]

    try:
        _iam_call("iam:CreateRole", name, iam.create_role, **kwargs)
    except ConflictIgnorable:
        logger.info("IAM 역할이 이미 존재하여 그대로 사용합니다: %s", name)
        return False

    logger.info("IAM 역할을 생성했습니다: %s", name)
    return True


def ensure_managed_policy_attachments(iam: Any, role_name: str, policy_arns: Iterable[str]) -> List[str]:
    """
    관리형 정책들을 역할에 연결하고, 처리한 ARN 목록을 반환한다.
    """
    attached: List[str] = []
    for arn in policy_arns:
        try:
            _iam_call(
                "iam:AttachRolePolicy",
                f"{role_name} <- {arn}",
                iam.attach_role_policy,
                RoleName=role_name,
                PolicyArn=arn,
            )
            logger.info("관리형 정책 연결: %s <- %s", role_name, arn)
        except ConflictIgnorable:
            logger.info("관리형 정책이 이미 연결되어 있습니다: %s <- %s", role_name, arn)
        attached.append(arn)
    return attached


def ensure_inline_policy(iam: Any, role_name: str, policy_name: str, document: PolicyDocument) -> None:
    """
    인라인 정책을 이름 기준으로 upsert 한다. 기존 문서는 덮어쓴다.
    """
    _iam_call(
        "iam:PutRolePolicy",
        f"{role_name}/{policy_name}",
        iam.put_role_policy,
        RoleName=role_name,
        PolicyName=policy_name,
        PolicyDocument=render(document),
    )
    logger.info("인라인 정책 적용: %s/%s", role_name, policy_name)


def check_role(iam: Any, name: str) -> str:
    """
    역할 존재 여부만 확인한다. (생성하지 않음)
    """
    try:
        iam.get_role(RoleName=name)
        return f"IAM Role: 존재함 ({name})"
    except ClientError as e:
        if _error_code(e) == "NoSuchEntity":
            return f"IAM Role: 없음 (생성이 필요함) ({name})"
        return f"IAM Role: 조회 실패 ({name}, {_error_code(e)})"


def check_inline_policy(iam: Any, role_name: str, policy_name: str) -> str:
    try:
        iam.get_role_policy(RoleName=role_name, PolicyName=policy_name)
        return f"Inline Policy: 존재함 ({role_name}/{policy_name})"
    except ClientError as e:
        if _error_code(e) == "NoSuchEntity":
            return f"Inline Policy: 없음 (생성이 필요함) ({role_name}/{policy_name})"
        return f"Inline Policy: 조회 실패 ({role_name}/{policy_name}, {_error_code(e)})"
