"""Configuration loading utilities for deploy-kit."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .paths import get_config_file_path

# Load .env file if it exists
load_dotenv()

DEFAULT_LOCK_TTL_MINUTES = 120

INFRASTRUCTURE_TYPES = ("sst-serverless", "ec2-docker", "custom")


@dataclass
class StageConfig:
    """Settings for a single deploy target."""

    domain: Optional[str] = None
    aws_region: Optional[str] = None
    requires_confirmation: bool = False
    skip_health_checks: bool = False
    skip_cache_invalidation: bool = False
    sst_stage_name: Optional[str] = None   # stage name passed to `sst`, defaults to the stage
    dynamo_table_name: Optional[str] = None
    cloudfront_distribution_id: Optional[str] = None


@dataclass
class HealthCheckConfig:
    """An HTTP endpoint probed after deployment."""

    url: str = "/"
    expected_status: int = 200
    timeout: int = 5000                    # milliseconds
    search_text: Optional[str] = None
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.url

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000


@dataclass
class HostedZone:
    """A Route53 hosted zone serving one of the project domains."""

    domain: str = ""
    zone_id: str = ""


@dataclass
class HooksConfig:
    """Shell commands run at lifecycle points of a deployment."""

    pre_deploy: Optional[str] = None
    post_build: Optional[str] = None
    post_deploy: Optional[str] = None
    on_error: Optional[str] = None


@dataclass
class LockConfig:
    """Deployment lock settings."""

    ttl_minutes: int = DEFAULT_LOCK_TTL_MINUTES
    remote_probe_timeout: int = 60         # seconds allowed for `sst unlock`


@dataclass
class ProjectConfig:
    """Top-level configuration, usually read from ``.deploy-config.json``."""

    project_name: str = "app"
    display_name: Optional[str] = None
    infrastructure: str = "sst-serverless"
    database: Optional[str] = None
    stages: List[str] = field(default_factory=lambda: ["staging", "production"])
    stage_config: Dict[str, StageConfig] = field(default_factory=dict)
    health_checks: List[HealthCheckConfig] = field(default_factory=list)
    hooks: HooksConfig = field(default_factory=HooksConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    aws_profile: Optional[str] = None
    main_domain: Optional[str] = None
    git_remote: str = "origin"
    require_clean_git: bool = True
    run_tests_before_deploy: bool = True
    test_command: str = "npm test"
    build_command: str = "npm run build"
    custom_deploy_script: Optional[str] = None
    backup_bucket: Optional[str] = None    # S3 bucket for database backups
    hosted_zones: List[HostedZone] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProjectConfig":
        data = _normalize_keys(payload)

        stage_payload = data.pop("stage_config", {}) or {}
        health_payload = data.pop("health_checks", []) or []
        hooks_payload = data.pop("hooks", {}) or {}
        lock_payload = data.pop("lock", {}) or {}
        zones_payload = data.pop("hosted_zones", []) or []

        try:
            stage_config = {
                str(stage): _build(StageConfig, _normalize_keys(values or {}))
                for stage, values in stage_payload.items()
            }
            health_checks = [
                _build(HealthCheckConfig, _normalize_keys(item)) for item in health_payload
            ]
            config = _build(
                cls,
                data,
                stage_config=stage_config,
                health_checks=health_checks,
                hooks=_build(HooksConfig, _normalize_keys(hooks_payload)),
                lock=_build(LockConfig, _normalize_keys(lock_payload)),
                hosted_zones=[
                    _build(HostedZone, _normalize_keys(item)) for item in zones_payload
                ],
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

        # Stages mentioned only in stage_config are still deployable
        config.stages = list(config.stages)
        for stage in config.stage_config:
            if stage not in config.stages:
                config.stages.append(stage)
        return config

    def get_stage_config(self, stage: str) -> StageConfig:
        return self.stage_config.get(stage) or StageConfig()

    def domain_for(self, stage: str) -> Optional[str]:
        """Domain serving ``stage``: explicit stage domain, else ``<stage>.<main_domain>``."""
        stage_domain = self.get_stage_config(stage).domain
        if stage_domain:
            return stage_domain
        if self.main_domain:
            return f"{stage}.{self.main_domain}"
        return None

    def hosted_zone_for(self, domain: str) -> Optional[HostedZone]:
        """Most specific configured hosted zone containing ``domain``."""
        matches = [
            zone for zone in self.hosted_zones
            if zone.domain and (domain == zone.domain or domain.endswith("." + zone.domain))
        ]
        return max(matches, key=lambda zone: len(zone.domain), default=None)

    def sst_stage_for(self, stage: str) -> str:
        return self.get_stage_config(stage).sst_stage_name or stage

    def distribution_id_for(self, stage: str) -> Optional[str]:
        """CloudFront distribution id from stage config or ``CLOUDFRONT_DIST_ID_<STAGE>``."""
        configured = self.get_stage_config(stage).cloudfront_distribution_id
        if configured:
            return configured
        env_key = f"CLOUDFRONT_DIST_ID_{stage.upper().replace('-', '_')}"
        return os.getenv(env_key) or None

    def validate(self) -> None:
        errors = []
        if not self.project_name:
            errors.append("projectName is required")
        if self.infrastructure not in INFRASTRUCTURE_TYPES:
            errors.append(
                f"infrastructure must be one of {', '.join(INFRASTRUCTURE_TYPES)}"
            )
        if not self.stages:
            errors.append("at least one stage is required")
        if self.lock.ttl_minutes <= 0:
            errors.append("lock.ttlMinutes must be positive")
        if errors:
            raise ConfigurationError(
                "Invalid configuration: " + "; ".join(errors),
                validation_errors=errors,
            )


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _normalize_keys(payload: Dict[str, Any]) -> Dict[str, Any]:
    # Accept the camelCase keys of existing .deploy-config.json files; drop _comments
    return {
        _snake_case(key): value
        for key, value in payload.items()
        if not key.startswith("_")
    }


def _build(cls, payload: Dict[str, Any], **overrides: Any):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"unknown {cls.__name__} field(s): {', '.join(unknown)}")
    return cls(**{**cls().__dict__, **payload, **overrides})


def load_config(
    path: Optional[str] = None,
    project_root: Optional[str] = None,
) -> ProjectConfig:
    """Load configuration from `path` or ``<project_root>/.deploy-config.json``.

    Environment variables (higher priority than the config file):
    - DEPLOY_KIT_AWS_PROFILE: AWS profile used by every AWS/SST command
    - DEPLOY_KIT_LOCK_TTL_MINUTES: deployment lock lifetime
    - DEPLOY_KIT_CUSTOM_DEPLOY_SCRIPT: script run instead of `sst deploy`
    """

    root = Path(project_root) if project_root else Path.cwd()
    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.append(get_config_file_path(root))

    for candidate in candidate_paths:
        if not candidate.is_file():
            continue
        try:
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                f"Could not parse {candidate}: {exc}", config_path=str(candidate)
            ) from exc

        config = ProjectConfig.from_dict(data)

        env_profile = os.getenv("DEPLOY_KIT_AWS_PROFILE")
        if env_profile:
            config.aws_profile = env_profile

        env_ttl = os.getenv("DEPLOY_KIT_LOCK_TTL_MINUTES")
        if env_ttl:
            try:
                config.lock.ttl_minutes = int(env_ttl)
            except ValueError as exc:
                raise ConfigurationError(
                    f"DEPLOY_KIT_LOCK_TTL_MINUTES must be an integer, got {env_ttl!r}"
                ) from exc

        env_script = os.getenv("DEPLOY_KIT_CUSTOM_DEPLOY_SCRIPT")
        if env_script:
            config.custom_deploy_script = env_script

        config.validate()
        return config

    raise FileNotFoundError(
        f"Could not find configuration file. Looked in: {', '.join(str(p) for p in candidate_paths)}"
    )
