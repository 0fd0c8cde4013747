from datetime import datetime, timezone

import pytest

from deploy_kit.config import HooksConfig, ProjectConfig, StageConfig
from deploy_kit.deployment import (
    CloudFrontCacheInvalidator,
    LifecycleHooks,
    ScriptDeployInvoker,
    ShellBuildInvoker,
    SstDeployInvoker,
)
from deploy_kit.deployment.invokers import default_deploy_invoker
from deploy_kit.errors import DeploymentCommandFailure

from stubs import StubSession, fail


def _config(**overrides) -> ProjectConfig:
    config = ProjectConfig(
        project_name="shop",
        aws_profile="acme",
        stage_config={"production": StageConfig(sst_stage_name="prod", cloudfront_distribution_id="E9")},
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def test_sst_deploy_uses_mapped_stage_and_profile():
    session = StubSession()
    SstDeployInvoker(session, _config()).deploy("production")
    assert session.commands == ["npx sst deploy --stage prod"]
    assert session.envs[0] == {"AWS_PROFILE": "acme"}


def test_deploy_failure_raises_with_exit_code():
    session = StubSession({"sst deploy": fail("UPDATE_ROLLBACK_COMPLETE", exit_status=2)})
    with pytest.raises(DeploymentCommandFailure) as excinfo:
        SstDeployInvoker(session, _config()).deploy("staging")
    assert excinfo.value.exit_code == 2
    assert "UPDATE_ROLLBACK_COMPLETE" in excinfo.value.stderr


def test_custom_script_selected_when_configured():
    session = StubSession()
    invoker = default_deploy_invoker(session, _config(custom_deploy_script="scripts/deploy.sh"))
    assert isinstance(invoker, ScriptDeployInvoker)
    invoker.deploy("staging")
    assert session.commands == ["bash scripts/deploy.sh staging"]


def test_build_prefers_post_build_hook():
    session = StubSession()
    ShellBuildInvoker(session, _config(hooks=HooksConfig(post_build="make bundle"))).build("staging")
    ShellBuildInvoker(session, _config()).build("staging")
    assert session.commands == ["make bundle", "npm run build"]


def test_cloudfront_invalidation():
    session = StubSession()
    assert CloudFrontCacheInvalidator(session, _config()).invalidate("production") is True
    assert session.commands == [
        'aws cloudfront create-invalidation --distribution-id E9 --paths "/*"'
    ]


def test_cloudfront_invalidation_without_distribution(monkeypatch):
    monkeypatch.delenv("CLOUDFRONT_DIST_ID_STAGING", raising=False)
    session = StubSession()
    assert CloudFrontCacheInvalidator(session, _config()).invalidate("staging") is False
    assert session.commands == []


def test_hooks_receive_stage_env_and_never_raise():
    session = StubSession({"./alert.sh": fail("webhook down")})
    hooks = LifecycleHooks(session, HooksConfig(pre_deploy="./prepare.sh", on_error="./alert.sh"))
    started = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    assert hooks.pre_deploy("staging", started) is True
    assert hooks.on_error("staging", started) is False
    assert hooks.post_deploy("staging", started) is True

    assert session.commands == ["./prepare.sh", "./alert.sh"]
    assert session.envs[0] == {
        "DEPLOY_KIT_STAGE": "staging",
        "DEPLOY_KIT_START_TIME": "2024-05-01T12:00:00+00:00",
    }
