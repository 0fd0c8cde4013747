import pytest

from deploy_kit.errors import RemoteLockError
from deploy_kit.locks import RemoteLockState, SstLockBackend, classify_unlock_output

from stubs import StubSession, fail, ok


@pytest.mark.parametrize(
    "text, expected",
    [
        ("No lock found for stage staging", RemoteLockState.UNLOCKED),
        ("Stage is not locked", RemoteLockState.UNLOCKED),
        ("Unlocked the app. Lock released", RemoteLockState.LOCKED),
        ("The stack is LOCKED by another update", RemoteLockState.LOCKED),
        ("Done.", RemoteLockState.UNKNOWN),
        ("", RemoteLockState.UNKNOWN),
        (None, RemoteLockState.UNKNOWN),
    ],
)
def test_classify_unlock_output(text, expected):
    assert classify_unlock_output(text) is expected


def test_probe_uses_mapped_sst_stage_and_profile():
    session = StubSession({"unlock": ok("Lock released")})
    backend = SstLockBackend(
        session,
        stage_resolver=lambda stage: "prod" if stage == "production" else stage,
        aws_profile="acme",
    )

    assert backend.probe("production") is RemoteLockState.LOCKED
    assert session.commands == ["npx sst unlock --stage prod"]
    assert session.envs[0] == {"AWS_PROFILE": "acme"}


def test_probe_timeout_is_unknown():
    session = StubSession()
    session.timeouts.add("unlock")
    backend = SstLockBackend(session, timeout=1)

    assert backend.probe("staging") is RemoteLockState.UNKNOWN


def test_clear_tolerates_missing_lock():
    session = StubSession({"unlock": fail("Error: no lock to release")})
    SstLockBackend(session).clear("staging")


def test_clear_raises_on_real_failure():
    session = StubSession({"unlock": fail("AccessDenied: not authorized")})
    with pytest.raises(RemoteLockError) as excinfo:
        SstLockBackend(session).clear("staging")
    assert "AccessDenied" in str(excinfo.value)
