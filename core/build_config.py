"""
Project build configuration.

A project describes its units in a JSON document (``build.config.json`` by
default)::

    {
        "units": [
            {"name": "app", "command": ["python", "bundle.py", "app"], "outputs": ["dist/app.js"]},
            {"name": "admin", "command": ["python", "bundle.py", "admin"], "outputs": ["dist/admin.js"]}
        ]
    }

Nodes build a slice of this list. The full document is preserved next to the
sliced one under ORIGINAL_CONFIG_NAME.
"""

import copy
import json
import os
import re
from typing import Any, Dict, List, Optional


BUILD_CONFIG_NAME = "build.config.json"
ORIGINAL_CONFIG_NAME = "original.build.config.json"


def load_build_config(path: str) -> Dict[str, Any]:
    """
    Load a build configuration document.

    Args:
        path: Path to the JSON document

    Returns:
        Parsed configuration with a ``units`` list

    Raises:
        ValueError: If the document has no ``units`` list
    """
    with open(path, 'r') as f:
        config = json.load(f)

    if not isinstance(config, dict) or not isinstance(config.get('units'), list):
        raise ValueError(f"Build configuration {path} must contain a 'units' list")

    return config


def unit_count(config: Dict[str, Any]) -> int:
    """Number of independently buildable units in a configuration"""
    return len(config['units'])


def slice_config(
    config: Dict[str, Any],
    first: int,
    last: int,
    source: str = ORIGINAL_CONFIG_NAME
) -> Dict[str, Any]:
    """
    Build a configuration containing only units ``[first, last]``.

    Args:
        config: Full build configuration
        first: Index of the first unit to keep
        last: Index of the last unit to keep (``first - 1`` for an empty slice)
        source: Name of the preserved full configuration

    Returns:
        New configuration document; the input is not modified
    """
    sliced = copy.deepcopy(config)
    sliced['units'] = copy.deepcopy(config['units'][first:last + 1])
    sliced['slice'] = {
        'first': first,
        'last': last,
        'source': source
    }
    return sliced


def render_config(config: Dict[str, Any]) -> str:
    """Serialize a configuration the way it is written to nodes"""
    return json.dumps(config, indent=2) + "\n"


def expected_outputs(config: Dict[str, Any], filename_regex: Optional[str] = None) -> List[str]:
    """
    Collect expected output filenames from a full configuration.

    Args:
        config: Full (unsliced) build configuration
        filename_regex: Optional pattern; only names matching it are kept

    Returns:
        Sorted, de-duplicated output basenames
    """
    pattern = re.compile(filename_regex) if filename_regex else None
    names = set()

    for unit in config['units']:
        for output in unit.get('outputs', []):
            name = os.path.basename(output)
            if pattern is not None and not pattern.search(name):
                continue
            names.add(name)

    return sorted(names)
