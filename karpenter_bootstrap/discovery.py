"""
discovery
---------

Karpenter 는 시작 시점에 subnet / security group 을 태그 쿼리로만 찾는다.
여기서는 노드그룹이 사용하는 subnet 전체와, 클러스터 SG + 첫 노드그룹 launch template 의 SG 에
`karpenter.sh/discovery=<cluster>` 태그를 붙인다.

매 실행마다 현재 클라우드 상태에서 집합을 다시 계산하고 태그를 붙이므로 상태가 없다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Set, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .config import BootstrapConfig
from .errors import TaggingError
from .logging_utils import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

DISCOVERY_TAG_KEY = "karpenter.sh/discovery"


def _unique(items: Iterable[str]) -> List[str]:
    """처음 등장한 순서를 유지하며 중복 제거."""
    return list(dict.fromkeys(i for i in items if i))


@dataclass
class DiscoveryResult:
    subnet_ids: List[str] = field(default_factory=list)
    security_group_ids: List[str] = field(default_factory=list)
    template_groups_found: bool = False

    def summary_lines(self) -> List[str]:
        lines = [
            f"subnets: {', '.join(self.subnet_ids) or '(none)'}",
            f"security groups: {', '.join(self.security_group_ids) or '(none)'}",
        ]
        if not self.template_groups_found:
            lines.append("launch template SG 를 찾지 못해 클러스터 SG 만 태그했습니다.")
        return lines


class DiscoveryTagger:
    def __init__(self, cfg: BootstrapConfig, eks: Any, ec2: Any) -> None:
        self.cluster_name = cfg.cluster_name
        self.eks = eks
        self.ec2 = ec2

    @property
    def tag(self) -> dict:
        return {"Key": DISCOVERY_TAG_KEY, "Value": self.cluster_name}

    def _call(self, operation: str, resource: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except ClientError as e:
            err = e.response.get("Error", {})
            raise TaggingError(
                operation, resource, str(err.get("Message", e)), code=err.get("Code")
            ) from e
        except BotoCoreError as e:
            raise TaggingError(operation, resource, str(e)) from e
        except (KeyError, IndexError, TypeError) as e:
            raise TaggingError(operation, resource, f"응답에 필요한 필드가 없습니다 ({e!r})") from e

    def list_nodegroups(self) -> List[str]:
        def _list() -> List[str]:
            names: List[str] = []
            paginator = self.eks.get_paginator("list_nodegroups")
            for page in paginator.paginate(clusterName=self.cluster_name):
                names.extend(page.get("nodegroups", []))
            return names

        return self._call("eks:ListNodegroups", self.cluster_name, _list)

    def describe_nodegroup(self, name: str) -> dict:
        return self._call(
            "eks:DescribeNodegroup",
            f"{self.cluster_name}/{name}",
            lambda: self.eks.describe_nodegroup(clusterName=self.cluster_name, nodegroupName=name)["nodegroup"],
        )

    def cluster_security_group(self) -> str:
        def _sg() -> str:
            cluster = self.eks.describe_cluster(name=self.cluster_name)["cluster"]
            sg = cluster["resourcesVpcConfig"]["clusterSecurityGroupId"]
            if not sg:
                raise KeyError("resourcesVpcConfig.clusterSecurityGroupId")
            return str(sg)

        return self._call("eks:DescribeCluster", self.cluster_name, _sg)

    def launch_template_security_groups(self, nodegroup: dict) -> List[str]:
        """
        노드그룹 launch template 의 SG 를 찾는다.
        launch template 이 없거나 조회에 실패하면 빈 목록을 돌려준다. (치명적이지 않음)
        """
        name = nodegroup.get("nodegroupName", "?")
        template = nodegroup.get("launchTemplate") or {}
        template_id = template.get("id")
        if not template_id:
            logger.warning("노드그룹 %s 에 launch template 이 없어 클러스터 SG 만 사용합니다.", name)
            return []

        kwargs: dict = {"LaunchTemplateId": template_id}
        if template.get("version"):
            kwargs["Versions"] = [str(template["version"])]

        try:
            versions = self.ec2.describe_launch_template_versions(**kwargs)["LaunchTemplateVersions"]
            data = versions[0]["LaunchTemplateData"]
        except (ClientError, BotoCoreError, KeyError, IndexError) as e:
            logger.warning(
                "launch template %s 의 SG 조회 실패, 클러스터 SG 만 사용합니다: %s", template_id, e
            )
            return []

        groups: List[str] = []
        interfaces = data.get("NetworkInterfaces") or []
        if interfaces:
            groups.extend(interfaces[0].get("Groups") or [])
        groups.extend(data.get("SecurityGroupIds") or [])
        return _unique(groups)

    def collect(self) -> DiscoveryResult:
        result = DiscoveryResult()
        nodegroups = self.list_nodegroups()
        logger.info("노드그룹 %d개: %s", len(nodegroups), nodegroups)

        subnets: List[str] = []
        first_nodegroup = None
        for name in nodegroups:
            ng = self.describe_nodegroup(name)
            if first_nodegroup is None:
                first_nodegroup = ng
            ng_subnets = ng.get("subnets") or []
            if not ng_subnets:
                logger.info("노드그룹 %s 에 subnet 이 없습니다.", name)
            subnets.extend(ng_subnets)
        result.subnet_ids = _unique(subnets)

        groups = [self.cluster_security_group()]
        if first_nodegroup is not None:
            template_groups = self.launch_template_security_groups(first_nodegroup)
            result.template_groups_found = bool(template_groups)
            groups.extend(template_groups)
        result.security_group_ids = _unique(groups)
        return result

    def apply_tag(self, resource_ids: List[str]) -> None:
        if not resource_ids:
            return
        self._call(
            "ec2:CreateTags",
            ", ".join(resource_ids),
            lambda: self.ec2.create_tags(Resources=list(resource_ids), Tags=[self.tag]),
        )
        logger.info("디스커버리 태그 적용 (%s=%s): %s", DISCOVERY_TAG_KEY, self.cluster_name, resource_ids)

    def run(self) -> DiscoveryResult:
        """
        subnet 과 SG 를 한 번에 수집해서 태그한다.
        같은 태그를 다시 붙이는 것은 no-op 이므로 재실행해도 안전하다.
        """
        result = self.collect()
        self.apply_tag(result.subnet_ids)
        self.apply_tag(result.security_group_ids)
        return result

    def check(self) -> List[str]:
        """
        수집 대상 리소스 중 디스커버리 태그가 없는 것을 보고한다. (태그하지 않음)
        """
        result = self.collect()
        targets = result.subnet_ids + result.security_group_ids
        if not targets:
            return ["Discovery: 태그 대상 리소스가 없습니다."]

        tagged: Set[str] = set()
        response = self._call(
            "ec2:DescribeTags",
            self.cluster_name,
            lambda: self.ec2.describe_tags(
                Filters=[
                    {"Name": "resource-id", "Values": targets},
                    {"Name": "key", "Values": [DISCOVERY_TAG_KEY]},
                    {"Name": "value", "Values": [self.cluster_name]},
                ]
            ),
        )
        for tag in response.get("Tags", []):
            tagged.add(tag.get("ResourceId", ""))

        results: List[str] = []
        for rid in targets:
            if rid in tagged:
                results.append(f"Discovery: 태그됨 ({rid})")
            else:
                results.append(f"Discovery: 태그 없음 (태그가 필요함) ({rid})")
        if not result.template_groups_found:
            results.append(
                "Discovery: launch template SG 조회 불가 (클러스터 SG 만 태그 대상) "
                f"({result.security_group_ids[0]})"
            )
        return results
