"""
Post-build output verification.
"""

import logging
import os
from typing import Any, Dict, Iterable, List

from coordinator.config import VerifyConfig
from core.build_config import expected_outputs
from core.errors import VerificationError


logger = logging.getLogger(__name__)


def find_missing(expected: Iterable[str], output_directory: str) -> List[str]:
    """
    Check which expected files are absent from a directory.

    Every name is checked; the result lists all missing ones in input order.
    """
    return [
        name for name in expected
        if not os.path.isfile(os.path.join(output_directory, name))
    ]


def verify_outputs(project_config: Dict[str, Any], verify: VerifyConfig) -> List[str]:
    """
    Verify that every expected output of the full build exists.

    Args:
        project_config: Full (unsliced) build configuration
        verify: Output directory and optional filename filter

    Returns:
        Names that were verified

    Raises:
        VerificationError: Listing every missing name
    """
    expected = expected_outputs(project_config, verify.filename_regex)
    logger.info(f"Verifying {len(expected)} output file(s) in {verify.output_directory}")

    missing = find_missing(expected, verify.output_directory)
    if missing:
        for name in missing:
            logger.error(f"Missing output: {name}")
        raise VerificationError(missing)

    logger.info(f"✓ All {len(expected)} output file(s) present")
    return expected
