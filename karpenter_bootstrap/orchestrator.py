from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from .config import BootstrapConfig
from .errors import ProvisioningError, TaggingError
from .logging_utils import get_logger
from . import (
    aws_auth,
    aws_iam,
    discovery,
    policies,
    resolver,
)


logger = get_logger(__name__)

# 실행 순서 그대로. CLI 의 --only 검증에도 사용한다.
ALL_SECTIONS: List[str] = [
    "node-role",
    "controller-role",
    "controller-policy",
    "discovery",
]


def _filter_sections(only_sections: Optional[Iterable[str]]) -> List[str]:
    if only_sections:
        requested = {s for s in only_sections}
        return [s for s in ALL_SECTIONS if s in requested]
    return list(ALL_SECTIONS)


def _bullets(items: List[str]) -> List[str]:
    if not items:
        return ["- (none)"]
    return [f"- {i}" for i in items]


def plan_all(cfg: BootstrapConfig, only_sections: Optional[Iterable[str]] = None) -> str:
    """
    설정과 결정적으로 계산되는 리소스 이름을 요약한다. AWS 호출은 하지 않는다.
    """
    sections = _filter_sections(only_sections)
    lines: List[str] = []
    lines.append("# Karpenter bootstrap plan")
    lines.append(f"- cluster: {cfg.cluster_name}")
    lines.append(f"- partition: {cfg.aws_partition}")
    lines.append(f"- region: {cfg.aws_region or '(AWS 프로필 기본값)'}")
    lines.append("")

    lines.append("## Config summary")
    lines.append(f"- karpenter_namespace: {cfg.karpenter_namespace}")
    lines.append(f"- service_account: {cfg.service_account}")
    lines.append(f"- k8s_version: {cfg.k8s_version}")
    lines.append(f"- aws_profile: {cfg.aws_profile or '(default)'}")
    lines.append(f"- output_dir: {cfg.output_dir}")
    lines.append(f"- tag_roles: {cfg.tag_roles}")
    lines.append("")

    lines.append("## Resources")
    lines.append(f"- node role: {policies.node_role_name(cfg.cluster_name)}")
    lines.append(f"- controller role: {policies.controller_role_name(cfg.cluster_name)}")
    lines.append(f"- controller policy: {policies.controller_policy_name(cfg.cluster_name)}")
    for arn in policies.managed_policy_arns(cfg.aws_partition):
        lines.append(f"- node managed policy: {arn}")
    lines.append(f"- discovery tag: {discovery.DISCOVERY_TAG_KEY}={cfg.cluster_name}")
    lines.append("")

    lines.append("## Sections")
    for name in ALL_SECTIONS:
        status = "ENABLED" if name in sections else "SKIPPED"
        lines.append(f"- {name}: {status}")

    return "\n".join(lines)


def render_all(cfg: BootstrapConfig, output_dir: Optional[str] = None
               ) -> Tuple[resolver.DerivedValues, policies.PolicyDocuments, List[str]]:
    """
    파생값을 조회하고 정책 문서 3종을 만들어 파일로 기록한다. IAM 은 건드리지 않는다.
    ResolutionError 는 그대로 전파된다.
    """
    clients = aws_auth.create_clients(cfg)
    derived = resolver.resolve_derived_values(cfg, clients)
    docs = policies.build_policy_documents(cfg, derived)
    paths = policies.write_policy_documents(docs, output_dir or cfg.output_dir)
    return derived, docs, paths


def _run_section(
    name: str,
    cfg: BootstrapConfig,
    clients: aws_auth.AwsClients,
    docs: policies.PolicyDocuments,
) -> List[str]:
    cluster = cfg.cluster_name
    # TagRole 권한이 없는 계정도 있으므로 역할 태그는 IAM_TAG_ROLES=true 일 때만 붙인다.
    role_tag = cluster if cfg.tag_roles else None

    if name == "node-role":
        role = policies.node_role_name(cluster)
        created = aws_iam.ensure_role(clients.iam, role, docs.node_trust, cluster_name=role_tag)
        arns = aws_iam.ensure_managed_policy_attachments(
            clients.iam, role, policies.managed_policy_arns(cfg.aws_partition)
        )
        return [f"{role}: {'created' if created else 'exists'}", f"managed policies: {len(arns)}"]

    if name == "controller-role":
        role = policies.controller_role_name(cluster)
        created = aws_iam.ensure_role(clients.iam, role, docs.controller_trust, cluster_name=role_tag)
        return [f"{role}: {'created' if created else 'exists'}"]

    if name == "controller-policy":
        role = policies.controller_role_name(cluster)
        policy_name = policies.controller_policy_name(cluster)
        aws_iam.ensure_inline_policy(clients.iam, role, policy_name, docs.controller_permission)
        return [f"{role}/{policy_name}: applied"]

    if name == "discovery":
        tagger = discovery.DiscoveryTagger(cfg, clients.eks, clients.ec2)
        return tagger.run().summary_lines()

    raise ValueError(f"알 수 없는 섹션: {name}")


def apply_all(cfg: BootstrapConfig, only_sections: Optional[Iterable[str]] = None) -> tuple[str, bool]:
    """
    섹션을 순서대로 하나씩 실행한다.
    실패한 섹션이 있으면 남은 섹션은 실행하지 않는다. 이미 적용된 단계는 되돌리지 않으며,
    원인을 고친 뒤 다시 실행하면 같은 상태로 수렴한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_failures: 실패한 섹션이 있는지 여부
    """
    sections = _filter_sections(only_sections)
    logger.info("적용 대상 섹션: %s", sections)

    # 파생값 조회 실패(ResolutionError)는 여기서 잡지 않는다: 아무것도 적용하지 않고 중단.
    clients = aws_auth.create_clients(cfg)
    derived = resolver.resolve_derived_values(cfg, clients)
    docs = policies.build_policy_documents(cfg, derived)
    written = policies.write_policy_documents(docs, cfg.output_dir)

    executed: List[str] = []
    skipped: List[str] = []
    failed: List[str] = []
    not_run: List[str] = []
    details: Dict[str, List[str]] = {}

    for name in ALL_SECTIONS:
        if name not in sections:
            skipped.append(name)
            continue
        if failed:
            not_run.append(name)
            continue

        logger.info("섹션 실행: %s", name)
        try:
            details[name] = _run_section(name, cfg, clients, docs)
        except (ProvisioningError, TaggingError) as e:
            failed.append(name)
            details[name] = [str(e)]
            logger.error("섹션 실행 실패: %s: %s", name, e)
            continue

        executed.append(name)

    lines: List[str] = []
    lines.append("# Karpenter bootstrap summary")
    lines.append(f"- cluster: {cfg.cluster_name}")
    lines.append(f"- account: {derived.account_id}")
    lines.append(f"- region: {derived.region}")
    lines.append(f"- oidc issuer: {derived.oidc_issuer_host}")
    for arch, ami in sorted(derived.ami_id_by_arch.items()):
        lines.append(f"- ami ({arch}): {ami}")
    lines.append("")

    lines.append("## Policy documents")
    lines.extend(_bullets(written))
    lines.append("")

    lines.append("## Executed sections")
    for s in executed:
        lines.append(f"- {s}")
        lines.extend(f"  - {d}" for d in details.get(s, []))
    if not executed:
        lines.append("- (none)")

    lines.append("")
    lines.append("## Skipped sections")
    lines.extend(_bullets(skipped))

    lines.append("")
    lines.append("## Failed sections")
    for s in failed:
        lines.append(f"- {s}")
        lines.extend(f"  - {d}" for d in details.get(s, []))
    if not failed:
        lines.append("- (none)")

    if not_run:
        lines.append("")
        lines.append("## Not run (이전 섹션 실패로 중단)")
        lines.extend(_bullets(not_run))

    summary = "\n".join(lines)
    return summary, bool(failed)


def check_all(cfg: BootstrapConfig, show_all: bool = False) -> tuple[str, bool]:
    """
    리소스를 만들거나 태그하지 않고 현재 상태만 점검한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_issues: 크리티컬 이슈 또는 생성/태그가 필요한 항목이 있는지 여부
    """
    lines: List[str] = []
    critical: List[str] = []
    warnings: List[str] = []

    lines.append("# Karpenter bootstrap pre-check")
    lines.append(f"- cluster: {cfg.cluster_name}")
    lines.append("")

    # 1) 파생값: 실패하면 나머지도 의미가 없다.
    lines.append("## Derived values")
    clients = aws_auth.create_clients(cfg)
    derived = resolver.resolve_derived_values(cfg, clients)
    if show_all:
        lines.append(f"- account: {derived.account_id}")
        lines.append(f"- region: {derived.region}")
        lines.append(f"- oidc issuer: {derived.oidc_issuer_host}")
        for arch, ami in sorted(derived.ami_id_by_arch.items()):
            lines.append(f"- ami ({arch}): {ami}")
    lines.append("")

    # 2) IAM
    lines.append("## IAM")
    iam_results = [
        aws_iam.check_role(clients.iam, policies.node_role_name(cfg.cluster_name)),
        aws_iam.check_role(clients.iam, policies.controller_role_name(cfg.cluster_name)),
        aws_iam.check_inline_policy(
            clients.iam,
            policies.controller_role_name(cfg.cluster_name),
            policies.controller_policy_name(cfg.cluster_name),
        ),
    ]
    for r in iam_results:
        if show_all:
            lines.append(f"- {r}")
        if "조회 실패" in r:
            critical.append(r)
        elif "없음" in r:
            warnings.append(r)
    lines.append("")

    # 3) Discovery tags
    lines.append("## Discovery tags")
    try:
        tag_results = discovery.DiscoveryTagger(cfg, clients.eks, clients.ec2).check()
        for r in tag_results:
            if show_all:
                lines.append(f"- {r}")
            if "태그 없음" in r:
                warnings.append(r)
            elif "SG 조회 불가" in r:
                warnings.append(r)
            elif "대상 리소스가 없습니다" in r:
                critical.append(r)
    except TaggingError as e:
        msg = f"Discovery: 체크 중 오류 발생: {e}"
        if show_all:
            lines.append(f"- {msg}")
        critical.append(msg)
    lines.append("")

    lines.append("## Summary")
    if critical:
        lines.append("- 상태: 크리티컬 이슈가 있습니다. apply 전에 반드시 해결해야 합니다.")
    elif warnings:
        lines.append("- 상태: 경고만 있습니다. apply 시 일부 리소스가 생성/태그됩니다.")
    else:
        lines.append("- 상태: 주요 이슈 없음 (이미 부트스트랩된 상태로 보입니다)")

    if show_all or critical:
        lines.append("")
        lines.append("### Critical issues")
        lines.extend(_bullets(critical))

    if show_all or warnings:
        lines.append("")
        lines.append("### Warnings (apply 시 생성/태그 예정)")
        lines.extend(_bullets(warnings))

    if not show_all:
        lines.append("")
        lines.append("자세한 상태를 보려면 `karpenter-bootstrap check -a` 를 실행하세요.")

    summary = "\n".join(lines)
    return summary, bool(critical or warnings)
