"""
Error taxonomy for Fleetbuild runs.

Every failure that can abort a run derives from FleetBuildError and carries
the process exit status the CLI reports for it.
"""

from typing import List, Optional


class FleetBuildError(Exception):
    """Base class for all orchestration failures."""

    exit_code = 2


class ConfigError(FleetBuildError):
    """Build plan configuration is missing or malformed."""

    exit_code = 3


class NodeConnectionError(FleetBuildError):
    """Remote handshake or authentication failed."""

    exit_code = 4


class TransferError(FleetBuildError):
    """Package upload or unpacking failed."""

    exit_code = 5


class RemoteCommandError(FleetBuildError):
    """A command run on a node exited with a non-zero status."""

    exit_code = 6

    def __init__(self, message: str, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        detail = f"{message} (exit code {returncode})"
        if stderr.strip():
            detail = f"{detail}: {stderr.strip().splitlines()[-1]}"
        super().__init__(detail)


class BuildError(FleetBuildError):
    """The build command failed on a node."""

    exit_code = 7

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class VerificationError(FleetBuildError):
    """One or more expected output files are missing after the build."""

    exit_code = 8

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(
            f"{len(self.missing)} expected output file(s) missing: {', '.join(self.missing)}"
        )
