"""
pytest 설정:

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.
AWS 는 호출하지 않는다. 아래의 인메모리 fake 클라이언트가 boto3 클라이언트 자리를 대신하고,
실패는 실제 botocore ClientError 로 흉내낸다.
"""

from __future__ import annotations

import copy
import os
import sys
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


from karpenter_bootstrap.aws_auth import AwsClients  # noqa: E402
from karpenter_bootstrap.config import BootstrapConfig  # noqa: E402


ACCOUNT_ID = "123456789012"
REGION = "us-west-2"
OIDC_ISSUER = "https://oidc.eks.us-west-2.amazonaws.com/id/EXAMPLED539D4633E53DE1B71EXAMPLE"


def client_error(code: str, operation: str, message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


class _Failing:
    """`fail_on[method] = code` 로 지정한 메서드 호출을 ClientError 로 실패시킨다."""

    def __init__(self) -> None:
        self.fail_on: Dict[str, str] = {}
        self.calls: List[str] = []

    def _record(self, method: str, operation: str) -> None:
        self.calls.append(method)
        code = self.fail_on.get(method)
        if code:
            raise client_error(code, operation)


class FakeSTS(_Failing):
    def get_caller_identity(self) -> dict:
        self._record("get_caller_identity", "GetCallerIdentity")
        return {"Account": ACCOUNT_ID, "Arn": f"arn:aws:iam::{ACCOUNT_ID}:user/ops"}


class _FakePaginator:
    def __init__(self, pages: List[dict]) -> None:
        self._pages = pages

    def paginate(self, **kwargs: Any):  # noqa: ANN201, ARG002
        yield from self._pages


class FakeEKS(_Failing):
    def __init__(self, cluster_name: str = "demo") -> None:
        super().__init__()
        self.cluster_name = cluster_name
        self.oidc_issuer: Optional[str] = OIDC_ISSUER
        self.cluster_security_group: Optional[str] = "sg-cluster"
        self.nodegroups: Dict[str, dict] = {
            "ng-a": {
                "nodegroupName": "ng-a",
                "subnets": ["subnet-1", "subnet-2"],
                "launchTemplate": {"id": "lt-1", "version": "3"},
            },
            "ng-b": {
                "nodegroupName": "ng-b",
                "subnets": ["subnet-2", "subnet-3"],
            },
        }

    def describe_cluster(self, name: str) -> dict:
        self._record("describe_cluster", "DescribeCluster")
        if name != self.cluster_name:
            raise client_error("ResourceNotFoundException", "DescribeCluster")
        return {
            "cluster": {
                "name": name,
                "identity": {"oidc": {"issuer": self.oidc_issuer}},
                "resourcesVpcConfig": {"clusterSecurityGroupId": self.cluster_security_group},
            }
        }

    def get_paginator(self, name: str) -> _FakePaginator:
        assert name == "list_nodegroups"
        self._record("list_nodegroups", "ListNodegroups")
        # 한 페이지에 하나씩 돌려서 페이지네이션을 흉내낸다.
        return _FakePaginator([{"nodegroups": [n]} for n in self.nodegroups])

    def describe_nodegroup(self, clusterName: str, nodegroupName: str) -> dict:  # noqa: N803
        self._record("describe_nodegroup", "DescribeNodegroup")
        return {"nodegroup": copy.deepcopy(self.nodegroups[nodegroupName])}


class FakeSSM(_Failing):
    def __init__(self, k8s_version: str = "1.29") -> None:
        super().__init__()
        base = f"/aws/service/eks/optimized-ami/{k8s_version}"
        self.parameters: Dict[str, str] = {
            f"{base}/amazon-linux-2-arm64/recommended/image_id": "ami-arm64",
            f"{base}/amazon-linux-2/recommended/image_id": "ami-amd64",
            f"{base}/amazon-linux-2-gpu/recommended/image_id": "ami-gpu",
        }

    def get_parameter(self, Name: str) -> dict:  # noqa: N803
        self._record("get_parameter", "GetParameter")
        if Name not in self.parameters:
            raise client_error("ParameterNotFound", "GetParameter")
        return {"Parameter": {"Name": Name, "Value": self.parameters[Name]}}


class FakeIAM(_Failing):
    def __init__(self) -> None:
        super().__init__()
        self.roles: Dict[str, dict] = {}

    def _role(self, name: str, operation: str) -> dict:
        if name not in self.roles:
            raise client_error("NoSuchEntity", operation)
        return self.roles[name]

    def create_role(self, RoleName: str, AssumeRolePolicyDocument: str, Tags: Optional[list] = None) -> dict:  # noqa: N803
        self._record("create_role", "CreateRole")
        if RoleName in self.roles:
            raise client_error("EntityAlreadyExists", "CreateRole", f"Role with name {RoleName} already exists.")
        self.roles[RoleName] = {
            "trust": AssumeRolePolicyDocument,
            "tags": list(Tags or []),
            "attached": [],
            "inline": {},
        }
        return {"Role": {"RoleName": RoleName}}

    def attach_role_policy(self, RoleName: str, PolicyArn: str) -> dict:  # noqa: N803
        self._record("attach_role_policy", "AttachRolePolicy")
        role = self._role(RoleName, "AttachRolePolicy")
        if PolicyArn not in role["attached"]:
            role["attached"].append(PolicyArn)
        return {}

    def put_role_policy(self, RoleName: str, PolicyName: str, PolicyDocument: str) -> dict:  # noqa: N803
        self._record("put_role_policy", "PutRolePolicy")
        self._role(RoleName, "PutRolePolicy")["inline"][PolicyName] = PolicyDocument
        return {}

    def get_role(self, RoleName: str) -> dict:  # noqa: N803
        self._record("get_role", "GetRole")
        self._role(RoleName, "GetRole")
        return {"Role": {"RoleName": RoleName}}

    def get_role_policy(self, RoleName: str, PolicyName: str) -> dict:  # noqa: N803
        self._record("get_role_policy", "GetRolePolicy")
        inline = self._role(RoleName, "GetRolePolicy")["inline"]
        if PolicyName not in inline:
            raise client_error("NoSuchEntity", "GetRolePolicy")
        return {"RoleName": RoleName, "PolicyName": PolicyName, "PolicyDocument": inline[PolicyName]}


class FakeEC2(_Failing):
    def __init__(self) -> None:
        super().__init__()
        # resource id -> {key: value}
        self.tags: Dict[str, Dict[str, str]] = {}
        self.create_tags_calls: List[List[str]] = []
        self.launch_templates: Dict[str, dict] = {
            "lt-1": {"NetworkInterfaces": [{"DeviceIndex": 0, "Groups": ["sg-node"]}]},
        }

    def create_tags(self, Resources: List[str], Tags: List[dict]) -> dict:  # noqa: N803
        self._record("create_tags", "CreateTags")
        self.create_tags_calls.append(list(Resources))
        for rid in Resources:
            for tag in Tags:
                self.tags.setdefault(rid, {})[tag["Key"]] = tag["Value"]
        return {}

    def describe_launch_template_versions(self, LaunchTemplateId: str, Versions: Optional[list] = None) -> dict:  # noqa: N803
        self._record("describe_launch_template_versions", "DescribeLaunchTemplateVersions")
        if LaunchTemplateId not in self.launch_templates:
            raise client_error("InvalidLaunchTemplateId.NotFound", "DescribeLaunchTemplateVersions")
        return {
            "LaunchTemplateVersions": [
                {
                    "LaunchTemplateId": LaunchTemplateId,
                    "VersionNumber": int((Versions or ["1"])[0]),
                    "LaunchTemplateData": copy.deepcopy(self.launch_templates[LaunchTemplateId]),
                }
            ]
        }

    def describe_tags(self, Filters: List[dict]) -> dict:  # noqa: N803
        self._record("describe_tags", "DescribeTags")
        values = {f["Name"]: f["Values"] for f in Filters}
        out = []
        for rid in values.get("resource-id", []):
            for key, value in self.tags.get(rid, {}).items():
                if key in values.get("key", [key]) and value in values.get("value", [value]):
                    out.append({"ResourceId": rid, "Key": key, "Value": value})
        return {"Tags": out}


@pytest.fixture
def cfg(tmp_path) -> BootstrapConfig:  # noqa: ANN001
    return BootstrapConfig(
        karpenter_namespace="karpenter",
        cluster_name="demo",
        aws_partition="aws",
        k8s_version="1.29",
        aws_region=REGION,
        output_dir=str(tmp_path / "policies"),
    )


@pytest.fixture
def fake_aws() -> AwsClients:
    return AwsClients(
        region=REGION,
        sts=FakeSTS(),
        eks=FakeEKS(),
        ssm=FakeSSM(),
        iam=FakeIAM(),
        ec2=FakeEC2(),
    )
