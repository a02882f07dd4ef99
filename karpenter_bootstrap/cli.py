import sys
from typing import Optional

import click

from .config import load_env_files, BootstrapConfig
from .errors import ResolutionError
from .logging_utils import setup_logging, get_logger
from .orchestrator import ALL_SECTIONS, apply_all, plan_all, check_all, render_all


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리). .env / .env.karpenter 를 여기서 읽습니다.",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="추가로 읽을 설정 파일 (KEY=VALUE 형식). 가장 마지막에 적용됩니다.",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-vv 는 botocore 로그까지 출력)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, config_file: Optional[str], verbose: int) -> None:
    """EKS 클러스터에 Karpenter 를 올리기 위한 IAM / 디스커버리 태그 부트스트랩 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["config_file"] = config_file
    ctx.obj["verbose"] = verbose


def _load_config_from_ctx(ctx: click.Context) -> BootstrapConfig:
    base_dir: str = ctx.obj["chdir"]
    loaded = load_env_files(base_dir, extra_file=ctx.obj.get("config_file"))
    logger.debug("설정 파일: %s", loaded)
    cfg = BootstrapConfig.from_env()
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _load_config_or_exit(ctx: click.Context) -> BootstrapConfig:
    # 설정 오류는 어떤 AWS 호출보다 먼저 실패해야 한다.
    try:
        return _load_config_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)


def _parse_only(only: str) -> Optional[list[str]]:
    if not only.strip():
        return None
    only_list = [p.strip() for p in only.split(",") if p.strip()]

    invalid = sorted({s for s in only_list if s not in ALL_SECTIONS})
    if invalid:
        click.echo(
            "[ERROR] 잘못된 섹션 이름이 있습니다: "
            + ", ".join(invalid)
            + f"\n허용되는 섹션: {', '.join(ALL_SECTIONS)}",
            err=True,
        )
        sys.exit(1)
    return only_list


_ONLY_HELP = (
    "쉼표로 구분된 섹션 이름(" + ",".join(ALL_SECTIONS) + "). 기본은 전체 섹션을 순서대로 실행합니다."
)


@main.command()
@click.option("--only", "only", type=str, default="", help=_ONLY_HELP)
@click.pass_context
def plan(ctx: click.Context, only: str) -> None:
    """현재 설정과 생성/태그될 리소스 이름을 요약 출력 (AWS 호출 없음)"""
    cfg = _load_config_or_exit(ctx)
    click.echo(plan_all(cfg, only_sections=_parse_only(only)))


@main.command()
@click.option(
    "-o",
    "--output-dir",
    "output_dir",
    type=click.Path(file_okay=False, dir_okay=True),
    default=None,
    help="정책 JSON 을 기록할 디렉토리 (기본: POLICY_OUTPUT_DIR 또는 현재 디렉토리)",
)
@click.pass_context
def render(ctx: click.Context, output_dir: Optional[str]) -> None:
    """파생값을 조회하여 정책 문서 3종(JSON)만 생성한다. IAM 은 변경하지 않는다."""
    cfg = _load_config_or_exit(ctx)

    try:
        _, _, paths = render_all(cfg, output_dir=output_dir)
    except ResolutionError as e:
        click.echo(f"[ERROR] 파생값 조회 실패: {e}", err=True)
        sys.exit(1)
    except Exception as e:  # noqa: BLE001
        logger.exception("정책 문서 생성 중 오류 발생")
        click.echo(f"[ERROR] render 실패: {e}", err=True)
        sys.exit(1)

    for path in paths:
        click.echo(path)


@main.command(name="apply")
@click.option("--only", "only", type=str, default="", help=_ONLY_HELP)
@click.pass_context
def apply(ctx: click.Context, only: str) -> None:
    """IAM 역할/정책을 생성·갱신하고 subnet / security group 에 디스커버리 태그를 붙인다"""
    cfg = _load_config_or_exit(ctx)
    only_list = _parse_only(only)

    try:
        summary, has_failures = apply_all(cfg, only_sections=only_list)
    except ResolutionError as e:
        click.echo(f"[ERROR] 파생값 조회 실패 (아무것도 적용하지 않았습니다): {e}", err=True)
        sys.exit(1)
    except Exception as e:  # noqa: BLE001
        logger.exception("apply 중 오류 발생")
        click.echo(f"[ERROR] apply 실패: {e}", err=True)
        sys.exit(1)

    click.echo(summary)

    # 섹션 실패가 있으면 전체 명령은 실패(exit 1). 원인 해결 후 다시 실행하면 수렴한다.
    if has_failures:
        sys.exit(1)


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """
    현재 디렉토리에 설정 템플릿(env.karpenter.example)을 복사한다.
    """
    import os
    from importlib import resources

    base_dir: str = ctx.obj["chdir"]
    name = "env.karpenter.example"

    target = os.path.join(base_dir, name)
    if os.path.exists(target):
        click.echo(f"{name} 이(가) 이미 존재하여 건너뜀")
        return
    try:
        with resources.files("karpenter_bootstrap.examples").joinpath(name).open("r", encoding="utf-8") as src, open(
            target, "w", encoding="utf-8"
        ) as dst:
            dst.write(src.read())
        click.echo(f"{name} 템플릿을 생성했습니다. .env.karpenter 로 이름을 바꿔 사용하세요.")
    except FileNotFoundError:
        click.echo(f"템플릿 {name} 을(를) 패키지에서 찾을 수 없습니다.", err=True)


@main.command()
@click.option(
    "-a",
    "--all",
    "show_all",
    is_flag=True,
    help="모든 체크 항목의 상세 상태를 출력합니다. (기본은 이슈만 요약)",
)
@click.pass_context
def check(ctx: click.Context, show_all: bool) -> None:
    """
    apply 전에 IAM 역할/정책과 디스커버리 태그 상태를 점검한다.
    (실제 리소스 생성/변경은 하지 않는다)
    """
    cfg = _load_config_or_exit(ctx)

    try:
        report, has_issues = check_all(cfg, show_all=show_all)
    except ResolutionError as e:
        click.echo(f"[ERROR] 파생값 조회 실패: {e}", err=True)
        sys.exit(1)
    except Exception as e:  # noqa: BLE001
        logger.exception("사전 체크 중 오류 발생")
        click.echo(f"[ERROR] 체크 실패: {e}", err=True)
        sys.exit(1)

    click.echo(report)

    if has_issues:
        sys.exit(1)
