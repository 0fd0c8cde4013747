"""Small AWS CLI queries shared by preflight and postflight checks."""

from __future__ import annotations

import json
from typing import Dict, List, Optional

from ..local import LocalSession

# CloudFront only accepts ACM certificates from us-east-1
CERTIFICATE_REGION = "us-east-1"

UNUSABLE_CERTIFICATE_STATUSES = ("FAILED", "EXPIRED", "REVOKED", "VALIDATION_TIMED_OUT", "INACTIVE")


class AwsQueryError(RuntimeError):
    """Raised when an AWS CLI query exits non-zero or prints unparsable output."""


def certificate_matches(certificate_domain: str, domain: str) -> bool:
    if certificate_domain == domain:
        return True
    if certificate_domain.startswith("*."):
        parent = certificate_domain[2:]
        head, _, rest = domain.partition(".")
        return bool(head) and rest == parent
    return False


def find_certificate(
    session: LocalSession,
    domain: str,
    env: Optional[Dict[str, str]] = None,
    timeout: float = 30,
) -> Optional[Dict[str, str]]:
    """Return ``{"DomainName", "Status", "CertificateArn"}`` for ``domain`` or None.

    An ISSUED certificate is preferred when several match.
    """
    result = session.run(
        f"aws acm list-certificates --region {CERTIFICATE_REGION} --output json",
        timeout=timeout,
        env=env,
    )
    if not result.ok:
        raise AwsQueryError(result.output or "aws acm list-certificates failed")
    try:
        summaries: List[dict] = json.loads(result.stdout or "{}").get("CertificateSummaryList", [])
    except (ValueError, AttributeError) as exc:
        raise AwsQueryError(f"Unexpected ACM output: {exc}") from exc

    matches = [
        summary for summary in summaries
        if certificate_matches(summary.get("DomainName", ""), domain)
    ]
    if not matches:
        return None
    matches.sort(key=lambda summary: summary.get("Status") != "ISSUED")
    return matches[0]


def query_text(
    session: LocalSession,
    command: str,
    env: Optional[Dict[str, str]] = None,
    timeout: float = 30,
) -> str:
    """Run an ``--output text`` AWS query and return its stripped stdout."""
    result = session.run(command, timeout=timeout, env=env)
    if not result.ok:
        first_line = (result.output or f"{command} failed").splitlines()[0]
        raise AwsQueryError(first_line)
    return result.stdout.strip()
