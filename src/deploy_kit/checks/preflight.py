"""Preflight checks: everything verified before the infrastructure is touched.

Any failure here aborts the deployment with nothing to undo, so a failed
preflight is always safe to retry.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, Dict, List, Optional

from ..errors import PreflightFailure
from .aws import UNUSABLE_CERTIFICATE_STATUSES, AwsQueryError, find_certificate
from .base import Check, CheckContext, CheckOutcome, CheckRunner

logger = logging.getLogger(__name__)

AWS_CREDENTIALS_VERIFIED = "aws-credentials"

CertificateLookup = Callable[[CheckContext, str], Optional[Dict[str, str]]]


class GitStatusCheck(Check):
    """The working tree must have no uncommitted changes."""

    name = "Git Status"

    def run(self, context: CheckContext) -> CheckOutcome:
        if not context.config.require_clean_git:
            return CheckOutcome.skip("requireCleanGit is false")

        result = context.session.run("git status --short")
        if not result.ok:
            return CheckOutcome.fail(f"git status failed: {result.output or result.exit_status}")
        if result.stdout.strip():
            changed = result.stdout.strip().splitlines()
            preview = ", ".join(line.strip() for line in changed[:5])
            more = f" (+{len(changed) - 5} more)" if len(changed) > 5 else ""
            return CheckOutcome.fail(
                f"Uncommitted changes found: {preview}{more}. Commit all changes before deploying"
            )
        return CheckOutcome.ok("Clean working directory")


class CredentialsCheck(Check):
    """AWS credentials for the configured profile must be valid."""

    name = "AWS Credentials"

    def run(self, context: CheckContext) -> CheckOutcome:
        if context.is_verified(AWS_CREDENTIALS_VERIFIED):
            return CheckOutcome.ok("Already verified")

        result = context.session.run(
            "aws sts get-caller-identity --output json",
            timeout=30,
            env=context.aws_env(),
        )
        if not result.ok:
            profile = context.config.aws_profile or "default"
            return CheckOutcome.fail(
                f"AWS credentials not found or invalid (profile: {profile}): "
                f"{(result.output or 'no output').splitlines()[0]}"
            )

        try:
            account = json.loads(result.stdout).get("Account", "unknown")
        except ValueError:
            account = "unknown"
        context.mark_verified(AWS_CREDENTIALS_VERIFIED)
        return CheckOutcome.ok(f"Account: {account}")


class TestSuiteCheck(Check):
    """Runs the project's test command."""

    name = "Tests"
    __test__ = False  # keep pytest from collecting this class

    def run(self, context: CheckContext) -> CheckOutcome:
        if not context.config.run_tests_before_deploy:
            return CheckOutcome.skip("runTestsBeforeDeploy is false")

        result = context.session.run(context.config.test_command)
        if not result.ok:
            tail = "\n".join(result.output.splitlines()[-5:])
            return CheckOutcome.fail(f"Test suite failed (exit {result.exit_status}): {tail}")
        return CheckOutcome.ok("All tests passing")


def _lookup_certificate(context: CheckContext, domain: str) -> Optional[Dict[str, str]]:
    return find_certificate(context.session, domain, env=context.aws_env())


class CertificateCheck(Check):
    """The stage domain must not be stuck with an unusable certificate.

    A missing certificate passes: SST requests one during the first deploy.
    """

    name = "SSL Certificate"

    def __init__(self, lookup: Optional[CertificateLookup] = None) -> None:
        self.lookup = lookup or _lookup_certificate

    def run(self, context: CheckContext) -> CheckOutcome:
        if context.config.infrastructure != "sst-serverless":
            return CheckOutcome.skip("non-SST infrastructure")
        domain = context.domain
        if not domain:
            return CheckOutcome.skip("no domain configured")

        try:
            certificate = self.lookup(context, domain)
        except AwsQueryError as exc:
            # Lookup trouble should not block a deploy; SST re-validates anyway
            return CheckOutcome.skip(f"could not query ACM: {exc}")

        if certificate is None:
            return CheckOutcome.ok(f"No certificate for {domain} yet; it will be created on deploy")
        status = certificate.get("Status", "UNKNOWN")
        if status in UNUSABLE_CERTIFICATE_STATUSES:
            return CheckOutcome.fail(
                f"Certificate for {domain} is {status}; request a new certificate before deploying"
            )
        if status != "ISSUED":
            return CheckOutcome.ok(f"Certificate for {domain} is {status} (deploy may wait for validation)")
        return CheckOutcome.ok(f"Certificate ready for {domain}")


class PreflightCheckRunner(CheckRunner):
    """Ordered, fail-fast checks run before build and deploy."""

    phase_name = "Pre-Deployment Checks"

    def failure_for(self, check: Check, reason: str) -> Exception:
        return PreflightFailure(check.name, reason)


def default_preflight_checks() -> List[Check]:
    """Clean tree, credentials, tests, certificate: in that order."""
    return [
        GitStatusCheck(),
        CredentialsCheck(),
        TestSuiteCheck(),
        CertificateCheck(),
    ]
