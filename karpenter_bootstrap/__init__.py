"""
karpenter_bootstrap
-------------------

기존 EKS 클러스터에 Karpenter 컨트롤러를 올리기 위해 필요한
IAM 역할/정책과 subnet, security group 디스커버리 태그를 준비하는 CLI 패키지.
어떤 단계든 다시 실행해도 같은 리소스로 수렴하도록(idempotent) 설계되어 있다.
"""

__all__ = [
    "config",
    "orchestrator",
]

__version__ = "0.1.0"
