"""
errors
------

부트스트랩 과정에서 사용하는 예외 분류.

- ConfigError: 필수 설정 누락/형식 오류. 클라우드 호출 전에 발생한다.
- ResolutionError: 파생값 조회 실패. 이후 단계는 실행하지 않는다.
- ConflictIgnorable: 이미 존재하는 IAM 리소스. 성공으로 취급한다.
- ProvisioningError: 그 외 IAM 쓰기 실패. 남은 단계를 중단한다.
- TaggingError: 디스커버리 태그 조회/적용 실패. 남은 단계를 중단한다.
"""

from __future__ import annotations

from typing import Optional


class BootstrapError(Exception):
    """모든 부트스트랩 예외의 루트."""


class ConfigError(BootstrapError, ValueError):
    pass


class ResolutionError(BootstrapError):
    def __init__(self, query: str, detail: str) -> None:
        self.query = query
        self.detail = detail
        super().__init__(f"{query} 조회 실패: {detail}")


class _OperationError(BootstrapError):
    """어떤 리소스에 대한 어떤 호출이 실패했는지를 담는 공통 베이스."""

    def __init__(self, operation: str, resource: str, detail: str, code: Optional[str] = None) -> None:
        self.operation = operation
        self.resource = resource
        self.detail = detail
        self.code = code
        suffix = f" [{code}]" if code else ""
        super().__init__(f"{operation} 실패 ({resource}){suffix}: {detail}")


class ConflictIgnorable(_OperationError):
    pass


class ProvisioningError(_OperationError):
    pass


class TaggingError(_OperationError):
    pass
