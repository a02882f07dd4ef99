"""
policies
--------

설정 + 파생값으로부터 IAM 정책 문서 3종을 만든다.

- node trust: EC2 인스턴스가 노드 역할을 assume
- controller trust: Karpenter 서비스 어카운트만 IRSA 로 컨트롤러 역할을 assume
- controller permission: 컨트롤러 역할의 인라인 정책

I/O 가 없는 순수 함수들이며, 같은 입력이면 항상 같은 바이트로 렌더링된다.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List

from .config import BootstrapConfig
from .logging_utils import get_logger
from .resolver import DerivedValues


logger = get_logger(__name__)

PolicyDocument = Dict[str, Any]

POLICY_VERSION = "2012-10-17"
STS_AUDIENCE = "sts.amazonaws.com"

NODEPOOL_TAG = "karpenter.sh/nodepool"
NODECLASS_TAG = "karpenter.k8s.aws/ec2nodeclass"
REGION_TAG = "topology.kubernetes.io/region"

NODE_MANAGED_POLICIES = [
    "AmazonEKSWorkerNodePolicy",
    "AmazonEKS_CNI_Policy",
    "AmazonEC2ContainerRegistryReadOnly",
    "AmazonSSMManagedInstanceCore",
]

NODE_TRUST_FILE = "node-trust-policy.json"
CONTROLLER_TRUST_FILE = "controller-trust-policy.json"
CONTROLLER_POLICY_FILE = "controller-policy.json"


def node_role_name(cluster_name: str) -> str:
    return f"KarpenterNodeRole-{cluster_name}"


def controller_role_name(cluster_name: str) -> str:
    return f"KarpenterControllerRole-{cluster_name}"


def controller_policy_name(cluster_name: str) -> str:
    return f"KarpenterControllerPolicy-{cluster_name}"


def managed_policy_arns(partition: str) -> List[str]:
    return [f"arn:{partition}:iam::aws:policy/{name}" for name in NODE_MANAGED_POLICIES]


def service_account_subject(namespace: str, service_account: str) -> str:
    return f"system:serviceaccount:{namespace}:{service_account}"


def build_node_trust_policy() -> PolicyDocument:
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": "ec2.amazonaws.com"},
                "Action": "sts:AssumeRole",
            }
        ],
    }


def build_controller_trust_policy(cfg: BootstrapConfig, derived: DerivedValues) -> PolicyDocument:
    # 조건 키에는 scheme 없는 host+path 를 써야 한다.
    host = derived.oidc_issuer_host
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {
                    "Federated": f"arn:{cfg.aws_partition}:iam::{derived.account_id}:oidc-provider/{host}",
                },
                "Action": "sts:AssumeRoleWithWebIdentity",
                "Condition": {
                    "StringEquals": {
                        f"{host}:aud": STS_AUDIENCE,
                        f"{host}:sub": service_account_subject(
                            cfg.karpenter_namespace, cfg.service_account
                        ),
                    }
                },
            }
        ],
    }


def build_controller_permission_policy(cfg: BootstrapConfig, derived: DerivedValues) -> PolicyDocument:
    partition = cfg.aws_partition
    account = derived.account_id
    region = derived.region
    cluster = cfg.cluster_name

    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Sid": "KarpenterCoreActions",
                "Effect": "Allow",
                "Action": [
                    "ssm:GetParameter",
                    "ec2:Describe*",
                    "ec2:RunInstances",
                    "ec2:CreateTags",
                    "ec2:CreateLaunchTemplate",
                    "ec2:CreateFleet",
                    "ec2:DeleteLaunchTemplate",
                    "pricing:GetProducts",
                ],
                "Resource": "*",
            },
            {
                "Sid": "ConditionalEC2Termination",
                "Effect": "Allow",
                "Action": "ec2:TerminateInstances",
                "Resource": "*",
                "Condition": {
                    "StringLike": {f"ec2:ResourceTag/{NODEPOOL_TAG}": "*"},
                },
            },
            {
                "Sid": "PassNodeIAMRole",
                "Effect": "Allow",
                "Action": "iam:PassRole",
                "Resource": f"arn:{partition}:iam::{account}:role/{node_role_name(cluster)}",
            },
            {
                "Sid": "EKSClusterEndpointLookup",
                "Effect": "Allow",
                "Action": "eks:DescribeCluster",
                "Resource": f"arn:{partition}:eks:{region}:{account}:cluster/{cluster}",
            },
            {
                "Sid": "InstanceProfileScopedActions",
                "Effect": "Allow",
                "Action": [
                    "iam:CreateInstanceProfile",
                    "iam:AddRoleToInstanceProfile",
                    "iam:RemoveRoleFromInstanceProfile",
                    "iam:DeleteInstanceProfile",
                    "iam:TagInstanceProfile",
                    "iam:GetInstanceProfile",
                ],
                "Resource": "*",
                "Condition": {
                    "StringEquals": {
                        f"aws:ResourceTag/kubernetes.io/cluster/{cluster}": "owned",
                        f"aws:ResourceTag/{REGION_TAG}": region,
                    },
                    "StringLike": {
                        f"aws:ResourceTag/{NODECLASS_TAG}": "*",
                    },
                },
            },
        ],
    }


def render(document: PolicyDocument) -> str:
    return json.dumps(document, indent=2) + "\n"


@dataclass(frozen=True)
class PolicyDocuments:
    node_trust: PolicyDocument
    controller_trust: PolicyDocument
    controller_permission: PolicyDocument

    def rendered(self) -> Dict[str, str]:
        """파일명 -> JSON 텍스트"""
        return {
            NODE_TRUST_FILE: render(self.node_trust),
            CONTROLLER_TRUST_FILE: render(self.controller_trust),
            CONTROLLER_POLICY_FILE: render(self.controller_permission),
        }


def build_policy_documents(cfg: BootstrapConfig, derived: DerivedValues) -> PolicyDocuments:
    return PolicyDocuments(
        node_trust=build_node_trust_policy(),
        controller_trust=build_controller_trust_policy(cfg, derived),
        controller_permission=build_controller_permission_policy(cfg, derived),
    )


def write_policy_documents(docs: PolicyDocuments, output_dir: str) -> List[str]:
    """
    렌더링된 정책 문서를 output_dir 에 기록하고 경로 목록을 반환한다.
    같은 이름의 파일은 덮어쓴다.
    """
    os.makedirs(output_dir, exist_ok=True)
    paths: List[str] = []
    for filename, text in docs.rendered().items():
        path = os.path.join(output_dir, filename)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        paths.append(path)
        logger.info("정책 문서 기록: %s", path)
    return paths
