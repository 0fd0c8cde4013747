import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

from deploy_kit.cli import build_parser, run_cli
from deploy_kit.deployment import DeploymentResult
from deploy_kit.locks import DeploymentLock, RemoteLockState
from deploy_kit.paths import get_lock_file_path


class CLITests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / ".deploy-config.json").write_text(
            json.dumps({
                "projectName": "shop",
                "stageConfig": {"production": {"requiresConfirmation": True}},
            }),
            encoding="utf-8",
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _run(self, *argv: str) -> int:
        return run_cli(["--project-root", str(self.root), *argv])

    def test_parser_requires_stage(self) -> None:
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["deploy"])

    def test_deploy_exit_code_follows_result(self) -> None:
        result = DeploymentResult(stage="staging", start_time=datetime.now(timezone.utc))
        with patch("deploy_kit.cli.DeploymentOrchestrator") as orchestrator_cls, \
                patch("deploy_kit.cli.print_result"):
            orchestrator_cls.return_value.deploy.return_value = result
            self.assertEqual(self._run("deploy", "staging"), 1)
            result.success = True
            self.assertEqual(self._run("deploy", "staging"), 0)

    def test_confirmation_declined(self) -> None:
        with patch("deploy_kit.cli.DeploymentOrchestrator") as orchestrator_cls, \
                patch("builtins.input", return_value="no"):
            self.assertEqual(self._run("deploy", "production"), 1)
        orchestrator_cls.assert_not_called()

    def test_status_and_recover(self) -> None:
        lock = DeploymentLock.create("staging", 120)
        get_lock_file_path(self.root, "staging").write_text(lock.to_json(), encoding="utf-8")

        with patch("deploy_kit.locks.backend.SstLockBackend.probe") as probe, \
                patch("deploy_kit.locks.backend.SstLockBackend.clear") as clear:
            probe.return_value = RemoteLockState.UNLOCKED
            self.assertEqual(self._run("status", "staging"), 0)
            self.assertEqual(self._run("recover", "staging"), 0)
            clear.assert_called_once_with("staging")

        self.assertFalse(get_lock_file_path(self.root, "staging").exists())

    def test_missing_config_returns_error(self) -> None:
        with tempfile.TemporaryDirectory() as empty:
            self.assertEqual(run_cli(["--project-root", empty, "status", "staging"]), 1)


if __name__ == "__main__":
    unittest.main()
