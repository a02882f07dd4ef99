import pytest

from karpenter_bootstrap.discovery import DISCOVERY_TAG_KEY, DiscoveryTagger
from karpenter_bootstrap.errors import TaggingError


def _tagger(cfg, fake_aws) -> DiscoveryTagger:  # noqa: ANN001
    return DiscoveryTagger(cfg, fake_aws.eks, fake_aws.ec2)


def _tagged(ec2) -> dict:  # noqa: ANN001
    return {rid: tags[DISCOVERY_TAG_KEY] for rid, tags in ec2.tags.items() if DISCOVERY_TAG_KEY in tags}


def test_run_tags_subnet_union_and_security_groups(cfg, fake_aws) -> None:  # noqa: ANN001
    result = _tagger(cfg, fake_aws).run()

    assert result.subnet_ids == ["subnet-1", "subnet-2", "subnet-3"]
    assert result.security_group_ids == ["sg-cluster", "sg-node"]
    assert result.template_groups_found
    assert _tagged(fake_aws.ec2) == {
        "subnet-1": "demo",
        "subnet-2": "demo",
        "subnet-3": "demo",
        "sg-cluster": "demo",
        "sg-node": "demo",
    }
    # subnet 한 번, SG 한 번. 중복 패스는 없다.
    assert fake_aws.ec2.create_tags_calls == [
        ["subnet-1", "subnet-2", "subnet-3"],
        ["sg-cluster", "sg-node"],
    ]


def test_nodegroup_without_subnets_does_not_fail(cfg, fake_aws) -> None:  # noqa: ANN001
    fake_aws.eks.nodegroups["ng-b"]["subnets"] = []

    result = _tagger(cfg, fake_aws).run()

    assert result.subnet_ids == ["subnet-1", "subnet-2"]
    assert "subnet-3" not in fake_aws.ec2.tags


def test_no_subnets_at_all_skips_subnet_tagging(cfg, fake_aws) -> None:  # noqa: ANN001
    for ng in fake_aws.eks.nodegroups.values():
        ng["subnets"] = []

    result = _tagger(cfg, fake_aws).run()

    assert result.subnet_ids == []
    assert fake_aws.ec2.create_tags_calls == [["sg-cluster", "sg-node"]]


def test_launch_template_lookup_failure_degrades_to_cluster_sg(cfg, fake_aws) -> None:  # noqa: ANN001
    fake_aws.ec2.fail_on["describe_launch_template_versions"] = "UnauthorizedOperation"

    result = _tagger(cfg, fake_aws).run()

    assert result.security_group_ids == ["sg-cluster"]
    assert not result.template_groups_found
    assert _tagged(fake_aws.ec2)["sg-cluster"] == "demo"
    assert "subnet-1" in fake_aws.ec2.tags


def test_nodegroup_without_launch_template_uses_cluster_sg(cfg, fake_aws) -> None:  # noqa: ANN001
    del fake_aws.eks.nodegroups["ng-a"]["launchTemplate"]

    result = _tagger(cfg, fake_aws).run()

    assert result.security_group_ids == ["sg-cluster"]
    assert "describe_launch_template_versions" not in fake_aws.ec2.calls


def test_template_security_group_ids_are_included(cfg, fake_aws) -> None:  # noqa: ANN001
    fake_aws.ec2.launch_templates["lt-1"] = {"SecurityGroupIds": ["sg-extra", "sg-cluster"]}

    result = _tagger(cfg, fake_aws).run()

    assert result.security_group_ids == ["sg-cluster", "sg-extra"]


def test_no_nodegroups_tags_cluster_sg_only(cfg, fake_aws) -> None:  # noqa: ANN001
    fake_aws.eks.nodegroups.clear()

    result = _tagger(cfg, fake_aws).run()

    assert result.subnet_ids == []
    assert result.security_group_ids == ["sg-cluster"]


def test_rerun_does_not_change_tag_set(cfg, fake_aws) -> None:  # noqa: ANN001
    tagger = _tagger(cfg, fake_aws)
    tagger.run()
    before = {rid: dict(tags) for rid, tags in fake_aws.ec2.tags.items()}

    tagger.run()

    assert fake_aws.ec2.tags == before


def test_create_tags_failure_raises_tagging_error(cfg, fake_aws) -> None:  # noqa: ANN001
    fake_aws.ec2.fail_on["create_tags"] = "UnauthorizedOperation"

    with pytest.raises(TaggingError) as excinfo:
        _tagger(cfg, fake_aws).run()

    assert excinfo.value.operation == "ec2:CreateTags"
    assert "subnet-1" in excinfo.value.resource


def test_missing_cluster_security_group_is_an_error(cfg, fake_aws) -> None:  # noqa: ANN001
    fake_aws.eks.cluster_security_group = None

    with pytest.raises(TaggingError, match="eks:DescribeCluster"):
        _tagger(cfg, fake_aws).run()


def test_check_reports_untagged_resources(cfg, fake_aws) -> None:  # noqa: ANN001
    tagger = _tagger(cfg, fake_aws)
    fake_aws.ec2.tags["subnet-1"] = {DISCOVERY_TAG_KEY: "demo"}
    fake_aws.ec2.tags["subnet-2"] = {DISCOVERY_TAG_KEY: "other-cluster"}

    results = tagger.check()

    assert "Discovery: 태그됨 (subnet-1)" in results
    assert "Discovery: 태그 없음 (태그가 필요함) (subnet-2)" in results
    assert fake_aws.ec2.create_tags_calls == []


def test_check_reports_missing_template_security_groups(cfg, fake_aws) -> None:  # noqa: ANN001
    fake_aws.ec2.fail_on["describe_launch_template_versions"] = "UnauthorizedOperation"

    results = _tagger(cfg, fake_aws).check()

    assert "Discovery: launch template SG 조회 불가 (클러스터 SG 만 태그 대상) (sg-cluster)" in results
    assert "Discovery: 태그 없음 (태그가 필요함) (sg-cluster)" in results


def test_check_is_quiet_when_template_security_groups_found(cfg, fake_aws) -> None:  # noqa: ANN001
    results = _tagger(cfg, fake_aws).check()

    assert not any("SG 조회 불가" in r for r in results)
