"""Pluggable actions that change the world: build, deploy, invalidate caches.

Each invoker raises ``DeploymentCommandFailure`` when its command exits
non-zero; the orchestrator decides what that means for the pipeline.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..config import ProjectConfig
from ..errors import DeploymentCommandFailure
from ..local import LocalCommandResult, LocalSession

logger = logging.getLogger(__name__)


def _raise_for_status(result: LocalCommandResult) -> None:
    if result.ok:
        return
    stderr = result.stderr or result.stdout
    # Keep the tail; build tools print the useful part last
    tail = "\n".join(stderr.splitlines()[-20:])
    raise DeploymentCommandFailure(result.command, result.exit_status, tail)


def _aws_env(config: ProjectConfig) -> Dict[str, str]:
    return {"AWS_PROFILE": config.aws_profile} if config.aws_profile else {}


class BuildInvoker(ABC):
    @abstractmethod
    def build(self, stage: str) -> None:
        """Build the application for ``stage``."""


class DeployInvoker(ABC):
    @abstractmethod
    def deploy(self, stage: str) -> None:
        """Apply the infrastructure change for ``stage``."""


class CacheInvalidator(ABC):
    @abstractmethod
    def invalidate(self, stage: str) -> bool:
        """Invalidate CDN caches for ``stage``.

        Returns False when there was nothing to invalidate.
        """


class NoopBuildInvoker(BuildInvoker):
    """Used when the deploy tool builds the application itself."""

    def build(self, stage: str) -> None:
        logger.info("   ℹ️  Build handled by the deploy command")


class ShellBuildInvoker(BuildInvoker):
    """Runs the ``postBuild`` hook command if set, else ``build_command``."""

    def __init__(self, session: LocalSession, config: ProjectConfig) -> None:
        self.session = session
        self.config = config

    @property
    def command(self) -> str:
        return self.config.hooks.post_build or self.config.build_command

    def build(self, stage: str) -> None:
        logger.info("🔨 Building application (%s)...", self.command)
        result = self.session.run(self.command, env={"DEPLOY_KIT_STAGE": stage})
        _raise_for_status(result)


class ScriptDeployInvoker(DeployInvoker):
    """Runs a project deploy script as ``bash <script> <stage>``."""

    def __init__(self, session: LocalSession, script: str, config: Optional[ProjectConfig] = None) -> None:
        self.session = session
        self.script = script
        self.config = config

    def deploy(self, stage: str) -> None:
        logger.info("🚀 Running custom deploy script %s for %s", self.script, stage)
        env = _aws_env(self.config) if self.config else {}
        result = self.session.run(f"bash {self.script} {stage}", env=env, stream_output=True)
        _raise_for_status(result)


class SstDeployInvoker(DeployInvoker):
    """Runs ``npx sst deploy --stage <sst stage>`` with the configured AWS profile."""

    def __init__(self, session: LocalSession, config: ProjectConfig, sst_binary: str = "npx sst") -> None:
        self.session = session
        self.config = config
        self.sst_binary = sst_binary

    def deploy(self, stage: str) -> None:
        sst_stage = self.config.sst_stage_for(stage)
        logger.info("🚀 Deploying %s with SST (stage %s)...", stage, sst_stage)
        result = self.session.run(
            f"{self.sst_binary} deploy --stage {sst_stage}",
            env=_aws_env(self.config),
            stream_output=True,
        )
        _raise_for_status(result)


class NoopCacheInvalidator(CacheInvalidator):
    def invalidate(self, stage: str) -> bool:
        return False


class CloudFrontCacheInvalidator(CacheInvalidator):
    """Invalidates every path of the stage's CloudFront distribution."""

    def __init__(self, session: LocalSession, config: ProjectConfig) -> None:
        self.session = session
        self.config = config

    def invalidate(self, stage: str) -> bool:
        distribution_id = self.config.distribution_id_for(stage)
        if not distribution_id:
            logger.info("   ℹ️  No CloudFront distribution id for %s, skipping invalidation", stage)
            return False
        logger.info("♻️  Invalidating CloudFront cache (%s)...", distribution_id)
        result = self.session.run(
            f'aws cloudfront create-invalidation --distribution-id {distribution_id} --paths "/*"',
            timeout=120,
            env=_aws_env(self.config),
        )
        _raise_for_status(result)
        return True


def default_deploy_invoker(session: LocalSession, config: ProjectConfig) -> DeployInvoker:
    if config.custom_deploy_script:
        return ScriptDeployInvoker(session, config.custom_deploy_script, config)
    return SstDeployInvoker(session, config)
