"""Human-readable summaries printed by the CLI."""

from __future__ import annotations

from typing import List, Sequence

from .models import DeploymentResult, StageTiming
from .rollback import STATUS_ACTIVE, STATUS_STALE, LockStatus, provide_rollback_guidance

RULE = "═" * 60
BAR_SECONDS = 5.0   # one bar block per 5s
BAR_WIDTH = 20


def _timing_lines(timings: Sequence[StageTiming]) -> List[str]:
    if not timings:
        return []
    lines = ["⏱️  Stage Timing Breakdown:"]
    for timing in timings:
        blocks = min(round(timing.duration / BAR_SECONDS), BAR_WIDTH)
        bar = "█" * blocks
        lines.append(f"  {timing.name:<28} {bar:<{BAR_WIDTH}} {timing.duration:.1f}s")
    lines.append("")
    return lines


def render_success_summary(result: DeploymentResult) -> str:
    lines = [
        "",
        RULE,
        "✨ DEPLOYMENT SUCCESSFUL",
        RULE,
        "",
        "📊 Deployment Summary:",
        f"  Stage: {result.stage}",
        f"  Total Duration: {result.duration_seconds:.1f}s",
        "  Status: ✅ All checks passed",
        "",
    ]
    lines.extend(_timing_lines(result.timings))
    if result.details.cache_invalidated_ok is False:
        lines.append("⚠️  CloudFront cache was not invalidated; stale content may be served for a while")
    if result.details.lock_released_ok is False:
        lines.append(f"⚠️  Deployment lock was not released; run: deploy-kit recover {result.stage}")
    lines.append(f"✅ Application is now live on {result.stage}")
    if result.end_time is not None:
        lines.append(f"   Deployment completed at {result.end_time.astimezone():%H:%M:%S}")
    return "\n".join(lines)


def render_failure_summary(result: DeploymentResult) -> str:
    failed_phase = result.failed_phase.value if result.failed_phase else result.phase.value
    lines = [
        "",
        RULE,
        "❌ DEPLOYMENT FAILED",
        RULE,
        "",
        "❌ Deployment Summary:",
        f"  Stage: {result.stage}",
        f"  Failed during: {failed_phase}",
        f"  Duration: {result.duration_seconds:.1f}s",
        f"  Error: {result.error}",
        "",
    ]
    lines.extend(_timing_lines(result.timings))
    lines.append("🔧 Recovery Options:")
    for number, step in enumerate(provide_rollback_guidance(result.stage, result.error or ""), 1):
        lines.append(f"  {number}. {step}")
    return "\n".join(lines)


def render_status(status: LockStatus) -> str:
    lines = [f"📊 Deployment status for {status.stage}", ""]
    if status.remote_locked:
        lines.append(f"⚠️  State lock detected for {status.stage} (will auto-clear on next deploy)")
    if status.state == STATUS_STALE:
        lines.append(
            f"⚠️  Stale deployment lock for {status.stage} "
            f"(expired {status.minutes_expired} min ago, will be cleared)"
        )
        lines.append(f"    Run: deploy-kit recover {status.stage}")
    elif status.state == STATUS_ACTIVE:
        lines.append(
            f"❌ Active deployment lock for {status.stage} ({status.minutes_remaining} min remaining)"
        )
        if status.file_lock is not None and status.file_lock.reason:
            lines.append(f"    Reason: {status.file_lock.reason}")
        lines.append("    Deployment is in progress or was interrupted")
        lines.append(f"    To force recovery: deploy-kit recover {status.stage}")
    else:
        lines.append(f"✅ Ready to deploy to {status.stage}")
    return "\n".join(lines)


def print_result(result: DeploymentResult) -> None:
    if result.success:
        print(render_success_summary(result))
    else:
        print(render_failure_summary(result))


def print_status(status: LockStatus) -> None:
    print(render_status(status))
