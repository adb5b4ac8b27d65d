"""
Tests for the command line entry point.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from coordinator import cli
from core.errors import BuildError, NodeConnectionError, VerificationError


def write_plan(tmp_path):
    path = tmp_path / "dist.build.json"
    path.write_text(json.dumps({
        'nodes': [{'nodeType': 'local', 'workingDir': str(tmp_path / "node")}],
        'progressHost': '127.0.0.1'
    }))
    return str(path)


class TestCli:
    """Test exit status mapping."""

    def test_no_command(self):
        """Test a missing subcommand is a usage error."""
        assert cli.main([]) == 1

    def test_unknown_option(self):
        """Test argparse errors are usage errors."""
        assert cli.main(["build", "--bogus"]) == 1

    def test_missing_plan(self, tmp_path, capsys):
        """Test a missing plan file exits with the config error status."""
        code = cli.main(["build", "--config", str(tmp_path / "missing.json")])

        assert code == 3
        assert "Failed:" in capsys.readouterr().err

    def test_success(self, tmp_path):
        """Test a successful run exits 0."""
        plan = write_plan(tmp_path)

        with patch.object(cli.Orchestrator, "run", new=AsyncMock(return_value={})):
            code = cli.main(["build", "--config", plan, "--project-dir", str(tmp_path)])

        assert code == 0

    @pytest.mark.parametrize("error, expected", [
        (NodeConnectionError("auth failed"), 4),
        (BuildError("build failed", returncode=1), 7),
        (RuntimeError("unexpected"), 2),
    ])
    def test_failure_codes(self, tmp_path, error, expected):
        """Test each failure kind maps to its exit status."""
        plan = write_plan(tmp_path)

        with patch.object(cli.Orchestrator, "run", new=AsyncMock(side_effect=error)):
            code = cli.main(["build", "--config", plan])

        assert code == expected

    def test_verification_lists_missing(self, tmp_path, capsys):
        """Test every missing output is printed."""
        plan = write_plan(tmp_path)
        error = VerificationError(["a.js", "b.js"])

        with patch.object(cli.Orchestrator, "run", new=AsyncMock(side_effect=error)):
            code = cli.main(["build", "--config", plan])

        err = capsys.readouterr().err
        assert code == 8
        assert "missing: a.js" in err
        assert "missing: b.js" in err
