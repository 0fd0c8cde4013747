"""Deployment pipeline, recovery and result reporting."""

from .hooks import LifecycleHooks
from .invokers import (
    BuildInvoker,
    CacheInvalidator,
    CloudFrontCacheInvalidator,
    DeployInvoker,
    NoopBuildInvoker,
    NoopCacheInvalidator,
    ScriptDeployInvoker,
    ShellBuildInvoker,
    SstDeployInvoker,
)
from .models import DeploymentDetails, DeploymentResult, PipelinePhase, StageTiming
from .orchestrator import DeploymentOrchestrator
from .rollback import LockStatus, RollbackManager, provide_rollback_guidance

__all__ = [
    "LifecycleHooks",
    "BuildInvoker",
    "CacheInvalidator",
    "CloudFrontCacheInvalidator",
    "DeployInvoker",
    "NoopBuildInvoker",
    "NoopCacheInvalidator",
    "ScriptDeployInvoker",
    "ShellBuildInvoker",
    "SstDeployInvoker",
    "DeploymentDetails",
    "DeploymentResult",
    "PipelinePhase",
    "StageTiming",
    "DeploymentOrchestrator",
    "LockStatus",
    "RollbackManager",
    "provide_rollback_guidance",
]
