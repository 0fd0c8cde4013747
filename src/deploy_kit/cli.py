"""Command-line interface for deploy-kit."""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import ProjectConfig, load_config
from .deployment import DeploymentOrchestrator, RollbackManager
from .deployment.printer import print_result, print_status
from .errors import DeployKitError, format_error
from .locks import LockManager
from .utils.logging import get_logger

logger = logging.getLogger(__name__)


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: ProjectConfig
    project_root: Path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deploy-kit",
        description="Deploy, inspect and recover staged cloud deployments.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file (default: <project-root>/.deploy-config.json).",
    )
    parser.add_argument(
        "--project-root",
        type=str,
        default=None,
        help="Project directory holding the config and lock files (default: cwd).",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging."
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Deploy to a stage")
    deploy_parser.add_argument("stage", help="Stage to deploy, e.g. staging")
    deploy_parser.add_argument(
        "--yes", "-y", action="store_true",
        help="Skip the confirmation prompt of stages that require one",
    )

    status_parser = subparsers.add_parser("status", help="Show lock status of a stage")
    status_parser.add_argument("stage", help="Stage to inspect")

    recover_parser = subparsers.add_parser(
        "recover", help="Clear the locks left by a failed deployment"
    )
    recover_parser.add_argument("stage", help="Stage to recover")

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    project_root = Path(args.project_root or Path.cwd()).resolve()
    config = load_config(args.config, project_root=str(project_root))
    return CLIContext(config=config, project_root=project_root)


def _confirm(stage: str) -> bool:
    try:
        answer = input(f"⚠️  {stage} requires confirmation. Type the stage name to continue: ")
    except (KeyboardInterrupt, EOFError):
        print()
        return False
    return answer.strip() == stage


def handle_deploy_command(args: argparse.Namespace, context: CLIContext) -> int:
    stage = args.stage
    if stage not in context.config.stages:
        logger.warning("Stage %s is not listed in the configuration; using defaults", stage)

    if context.config.get_stage_config(stage).requires_confirmation and not args.yes:
        if not _confirm(stage):
            print("❌ Cancelled")
            return 1

    orchestrator = DeploymentOrchestrator(context.config, context.project_root)
    result = orchestrator.deploy(stage)
    print_result(result)
    return 0 if result.success else 1


def _rollback_manager(context: CLIContext) -> RollbackManager:
    return RollbackManager(LockManager.from_config(context.config, context.project_root))


def dispatch_command(args: argparse.Namespace) -> int:
    get_logger(verbose=args.verbose)
    context = _build_context(args)

    if args.command == "deploy":
        return handle_deploy_command(args, context)

    if args.command == "status":
        print_status(_rollback_manager(context).get_status(args.stage))
        return 0

    if args.command == "recover":
        _rollback_manager(context).recover(args.stage)
        return 0

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return dispatch_command(args)
    except (DeployKitError, FileNotFoundError) as exc:
        print(f"❌ {format_error(exc)}")
        return 1
