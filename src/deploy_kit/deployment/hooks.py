"""User-defined shell commands run at lifecycle points of a deployment."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional

from ..config import HooksConfig
from ..local import LocalSession

logger = logging.getLogger(__name__)


class LifecycleHooks:
    """Runs the ``preDeploy``, ``postDeploy`` and ``onError`` hooks.

    Hooks are best effort: a failing hook is logged and never changes the
    outcome of the deployment.
    """

    def __init__(self, session: LocalSession, hooks: Optional[HooksConfig] = None) -> None:
        self.session = session
        self.hooks = hooks or HooksConfig()

    def pre_deploy(self, stage: str, start_time: datetime) -> bool:
        return self._run("preDeploy", self.hooks.pre_deploy, stage, start_time)

    def post_deploy(self, stage: str, start_time: datetime) -> bool:
        return self._run("postDeploy", self.hooks.post_deploy, stage, start_time)

    def on_error(self, stage: str, start_time: datetime) -> bool:
        return self._run("onError", self.hooks.on_error, stage, start_time)

    def _run(self, hook_name: str, command: Optional[str], stage: str, start_time: datetime) -> bool:
        """Returns True when the hook ran successfully or is not configured."""
        if not command:
            return True

        env: Dict[str, str] = {
            "DEPLOY_KIT_STAGE": stage,
            "DEPLOY_KIT_START_TIME": start_time.isoformat(),
        }
        logger.info("🪝 Running %s hook: %s", hook_name, command)
        try:
            result = self.session.run(command, env=env)
        except Exception as exc:
            logger.warning("⚠️  %s hook raised: %s", hook_name, exc)
            return False
        if not result.ok:
            logger.warning(
                "⚠️  %s hook failed (exit %s): %s",
                hook_name,
                result.exit_status,
                result.output or "no output",
            )
            return False
        return True
