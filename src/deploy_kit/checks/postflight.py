"""Postflight checks: validate the deployment after the infrastructure changed.

Only the domain configuration check is critical: its failure aborts the
pipeline even though the deploy command succeeded. Every other check is
advisory; its failures are logged, never raised.
"""

from __future__ import annotations

import logging
import socket
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import requests

from ..config import HealthCheckConfig
from ..errors import PostflightAdvisoryFailure, PostflightCriticalFailure, format_error
from .aws import AwsQueryError, find_certificate, query_text
from .base import Check, CheckContext, CheckOutcome, CheckResult, CheckRunner, log_check_result

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_CHECK = HealthCheckConfig(url="/health", name="Application health")


class ApplicationHealthCheck(Check):
    """Probes the configured HTTP endpoints of the stage domain."""

    name = "Application Health"
    critical = False

    def __init__(self, http: Optional[requests.Session] = None) -> None:
        self.http = http or requests.Session()

    def run(self, context: CheckContext) -> CheckOutcome:
        if context.stage_config.skip_health_checks:
            return CheckOutcome.skip("skipHealthChecks is set for this stage")

        endpoints = context.config.health_checks or [DEFAULT_HEALTH_CHECK]
        failures = []
        passed = 0
        for endpoint in endpoints:
            url = self._resolve_url(endpoint.url, context.domain)
            if url is None:
                continue
            error = self._probe(url, endpoint, default_endpoint=endpoint is DEFAULT_HEALTH_CHECK)
            if error:
                failures.append(f"{endpoint.display_name}: {error}")
            else:
                passed += 1

        if failures:
            return CheckOutcome.fail("; ".join(failures))
        if passed == 0:
            return CheckOutcome.skip("no domain configured for relative health check URLs")
        return CheckOutcome.ok(f"{passed} endpoint(s) healthy")

    @staticmethod
    def _resolve_url(url: str, domain: Optional[str]) -> Optional[str]:
        if url.startswith("http://") or url.startswith("https://"):
            return url
        if not domain:
            return None
        return f"https://{domain}/{url.lstrip('/')}"

    def _probe(self, url: str, endpoint: HealthCheckConfig, default_endpoint: bool) -> Optional[str]:
        try:
            response = self.http.get(url, timeout=endpoint.timeout_seconds)
        except requests.Timeout:
            return f"timed out after {endpoint.timeout_seconds:g}s (CDN may still be propagating)"
        except requests.RequestException as exc:
            return f"request failed: {exc}"

        status = response.status_code
        # The built-in /health probe only proves the app answers; 404 is fine
        accepted = status == endpoint.expected_status or 200 <= status < 400
        if default_endpoint and status == 404:
            accepted = True
        if not accepted:
            return f"HTTP {status} (expected {endpoint.expected_status})"
        if endpoint.search_text and endpoint.search_text not in response.text:
            return f"response missing text {endpoint.search_text!r}"
        return None


class CdnSecurityCheck(Check):
    """The CloudFront distribution is deployed and its origin uses Origin Access Control."""

    name = "CloudFront Security"
    critical = False

    def run(self, context: CheckContext) -> CheckOutcome:
        distribution_id = context.config.distribution_id_for(context.stage)
        if not distribution_id:
            return CheckOutcome.skip("CloudFront distribution id not available")

        env = context.aws_env()
        try:
            status = query_text(
                context.session,
                f"aws cloudfront get-distribution --id {distribution_id} "
                "--query Distribution.Status --output text",
                env=env,
            )
            oac_id = query_text(
                context.session,
                f"aws cloudfront get-distribution-config --id {distribution_id} "
                "--query DistributionConfig.Origins.Items[0].OriginAccessControlId --output text",
                env=env,
            )
        except AwsQueryError as exc:
            if "InvalidDistribution" in str(exc) or "NoSuchDistribution" in str(exc):
                return CheckOutcome.fail("distribution still initializing")
            return CheckOutcome.fail(f"validation inconclusive: {exc}")

        if status != "Deployed":
            return CheckOutcome.fail(f"distribution status {status} (propagating)")
        if not oac_id or oac_id == "None":
            return CheckOutcome.fail("no Origin Access Control configured (may cause 403 errors)")
        return CheckOutcome.ok(f"{distribution_id} deployed with OAC {oac_id}")


DatabaseProbe = Callable[[CheckContext], CheckOutcome]


class DatabaseCheck(Check):
    """The stage database answers.

    DynamoDB tables are checked through the AWS CLI; other databases need a
    project-specific ``probe``.
    """

    name = "Database"
    critical = False

    def __init__(self, probe: Optional[DatabaseProbe] = None) -> None:
        self.probe = probe

    def run(self, context: CheckContext) -> CheckOutcome:
        database = context.config.database
        if not database:
            return CheckOutcome.skip("no database configured")
        if self.probe is not None:
            return self.probe(context)

        table = context.stage_config.dynamo_table_name
        if database != "dynamodb" or not table:
            return CheckOutcome.skip(f"no connectivity probe configured for {database}")
        try:
            status = query_text(
                context.session,
                f"aws dynamodb describe-table --table-name {table} "
                "--query Table.TableStatus --output text",
                env=context.aws_env(),
            )
        except AwsQueryError as exc:
            return CheckOutcome.fail(f"table {table} not reachable: {exc}")
        if status != "ACTIVE":
            return CheckOutcome.fail(f"table {table} is {status}")
        return CheckOutcome.ok(f"table {table} ACTIVE")


@dataclass
class DomainValidator:
    """One aspect of the domain wiring checked by DomainConfigurationCheck."""
    name: str
    validate: Callable[[CheckContext, str], CheckOutcome]


def validate_certificate_alias(context: CheckContext, domain: str) -> CheckOutcome:
    try:
        certificate = find_certificate(context.session, domain, env=context.aws_env())
    except AwsQueryError as exc:
        return CheckOutcome.fail(f"could not query ACM: {exc}")
    if certificate is None:
        return CheckOutcome.fail(f"no ACM certificate covers {domain}")
    if certificate.get("Status") != "ISSUED":
        return CheckOutcome.fail(f"certificate for {domain} is {certificate.get('Status')}")

    try:
        aliases = query_text(
            context.session,
            "aws cloudfront list-distributions "
            "--query DistributionList.Items[].Aliases.Items[] --output text",
            env=context.aws_env(),
        )
    except AwsQueryError as exc:
        return CheckOutcome.fail(f"could not list CloudFront aliases: {exc}")
    if domain not in aliases.split():
        return CheckOutcome.fail(f"{domain} is not an alias of any CloudFront distribution")
    return CheckOutcome.ok()


def validate_dns_records(context: CheckContext, domain: str) -> CheckOutcome:
    """Route53 records when a hosted zone is configured, else plain resolution."""
    zone = context.config.hosted_zone_for(domain)
    if zone is not None:
        zone_id = zone.zone_id.rsplit("/", 1)[-1]
        try:
            record_types = query_text(
                context.session,
                f"aws route53 list-resource-record-sets --hosted-zone-id {zone_id} "
                f"--query \"ResourceRecordSets[?Name=='{domain}.'].Type\" --output text",
                env=context.aws_env(),
            )
        except AwsQueryError as exc:
            return CheckOutcome.fail(f"could not list records of zone {zone_id}: {exc}")
        if not {"A", "AAAA", "CNAME"} & set(record_types.split()):
            return CheckOutcome.fail(f"no A/AAAA/CNAME record for {domain} in zone {zone_id}")
        return CheckOutcome.ok(f"{domain} has records in zone {zone_id}")

    try:
        addresses = {info[4][0] for info in socket.getaddrinfo(domain, 443)}
    except socket.gaierror as exc:
        return CheckOutcome.fail(f"{domain} does not resolve: {exc}")
    return CheckOutcome.ok(f"{domain} resolves to {len(addresses)} address(es)")


def validate_runtime_wiring(context: CheckContext, domain: str) -> CheckOutcome:
    """The server function for the stage exists."""
    try:
        functions = query_text(
            context.session,
            "aws lambda list-functions --query Functions[].FunctionName --output text",
            env=context.aws_env(),
        )
    except AwsQueryError as exc:
        return CheckOutcome.fail(f"could not list Lambda functions: {exc}")
    prefix = f"{context.config.project_name}-{context.config.sst_stage_for(context.stage)}"
    if not any(name.startswith(prefix) for name in functions.split()):
        return CheckOutcome.fail(f"no Lambda function named {prefix}-* found")
    return CheckOutcome.ok()


DEFAULT_DOMAIN_VALIDATORS = (
    DomainValidator("Certificate alias", validate_certificate_alias),
    DomainValidator("DNS records", validate_dns_records),
    DomainValidator("Runtime wiring", validate_runtime_wiring),
)


class DomainConfigurationCheck(Check):
    """Certificate alias, DNS records and runtime wiring of the stage domain."""

    name = "Domain Configuration"
    critical = True

    def __init__(self, validators: Optional[Sequence[DomainValidator]] = None) -> None:
        self.validators = list(validators if validators is not None else DEFAULT_DOMAIN_VALIDATORS)

    def run(self, context: CheckContext) -> CheckOutcome:
        if context.config.infrastructure != "sst-serverless":
            return CheckOutcome.skip("non-SST infrastructure")
        domain = context.domain
        if not domain:
            return CheckOutcome.skip("no domain configured")

        issues = []
        for validator in self.validators:
            try:
                outcome = validator.validate(context, domain)
            except Exception as exc:
                outcome = CheckOutcome.fail(str(exc) or exc.__class__.__name__)
            if outcome.passed:
                logger.debug("   %s OK for %s", validator.name, domain)
            else:
                issues.append(f"{validator.name}: {outcome.message}")
        if issues:
            return CheckOutcome.fail("; ".join(issues))
        return CheckOutcome.ok(f"{domain} fully wired")


class PostflightCheckRunner(CheckRunner):
    """Advisory probes run concurrently; critical checks run after, fail-fast."""

    phase_name = "Post-Deployment Validation"

    def __init__(self, checks: Sequence[Check], max_workers: int = 4) -> None:
        super().__init__(checks)
        self.max_workers = max_workers

    def failure_for(self, check: Check, reason: str) -> Exception:
        return PostflightCriticalFailure(check.name, reason)

    def run(self, context: CheckContext) -> List[CheckResult]:
        logger.info("🔍 %s (%s)", self.phase_name, context.stage)
        advisory = [check for check in self.checks if not check.critical]
        critical = [check for check in self.checks if check.critical]
        results: List[CheckResult] = []

        if advisory:
            # Read-only probes; their relative order does not matter
            with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(advisory)))) as pool:
                futures = [pool.submit(self.run_check, check, context) for check in advisory]
                advisory_results = [future.result() for future in futures]
            for result in advisory_results:
                results.append(result)
                context.results.append(result)
                if result.passed:
                    log_check_result(result)
                else:
                    failure = PostflightAdvisoryFailure(result.name, result.error or "failed")
                    logger.warning("   ⚠️  %s", format_error(failure))

        for check in critical:
            result = self.run_check(check, context)
            results.append(result)
            context.results.append(result)
            log_check_result(result)
            if not result.passed:
                raise self.failure_for(check, result.error or "failed")
        return results


def default_postflight_checks(http: Optional[requests.Session] = None) -> List[Check]:
    return [
        ApplicationHealthCheck(http=http),
        CdnSecurityCheck(),
        DatabaseCheck(),
        DomainConfigurationCheck(),
    ]
