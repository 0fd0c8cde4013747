"""Validation phases run before and after the deploy action.

- PreflightCheckRunner: ordered, fail-fast checks before anything is deployed
- PostflightCheckRunner: critical domain validation plus advisory probes
"""

from .base import Check, CheckContext, CheckOutcome, CheckResult, CheckRunner
from .postflight import (
    ApplicationHealthCheck,
    CdnSecurityCheck,
    DatabaseCheck,
    DomainConfigurationCheck,
    DomainValidator,
    PostflightCheckRunner,
    default_postflight_checks,
)
from .preflight import (
    CertificateCheck,
    CredentialsCheck,
    GitStatusCheck,
    PreflightCheckRunner,
    TestSuiteCheck,
    default_preflight_checks,
)

__all__ = [
    "Check",
    "CheckContext",
    "CheckOutcome",
    "CheckResult",
    "CheckRunner",
    "ApplicationHealthCheck",
    "CdnSecurityCheck",
    "DatabaseCheck",
    "DomainConfigurationCheck",
    "DomainValidator",
    "PostflightCheckRunner",
    "default_postflight_checks",
    "CertificateCheck",
    "CredentialsCheck",
    "GitStatusCheck",
    "PreflightCheckRunner",
    "TestSuiteCheck",
    "default_preflight_checks",
]
