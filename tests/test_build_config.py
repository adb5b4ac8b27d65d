"""
Tests for project build configuration and archiving.
"""

import json
import os
import zipfile

import pytest

from core.archive import archive_project, extract_archive
from core.build_config import (
    ORIGINAL_CONFIG_NAME,
    expected_outputs,
    load_build_config,
    slice_config,
    unit_count,
)


def make_config(count):
    return {
        'mode': 'production',
        'units': [
            {'name': f'unit{i}', 'command': ['true'], 'outputs': [f'dist/unit{i}.js', f'dist/unit{i}.css']}
            for i in range(count)
        ]
    }


class TestBuildConfig:
    """Test loading and slicing build configurations."""

    def test_load_build_config(self, tmp_path):
        """Test loading a valid configuration."""
        path = tmp_path / "build.config.json"
        path.write_text(json.dumps(make_config(3)))

        config = load_build_config(str(path))

        assert unit_count(config) == 3

    def test_load_rejects_missing_units(self, tmp_path):
        """Test documents without a units list are rejected."""
        path = tmp_path / "build.config.json"
        path.write_text(json.dumps({'targets': []}))

        with pytest.raises(ValueError):
            load_build_config(str(path))

    def test_slice_config(self):
        """Test slicing keeps only the requested units."""
        config = make_config(5)

        sliced = slice_config(config, 1, 3)

        assert [u['name'] for u in sliced['units']] == ['unit1', 'unit2', 'unit3']
        assert sliced['mode'] == 'production'
        assert sliced['slice'] == {'first': 1, 'last': 3, 'source': ORIGINAL_CONFIG_NAME}
        # Input untouched
        assert unit_count(config) == 5
        assert 'slice' not in config

    def test_empty_slice(self):
        """Test an empty range yields no units."""
        sliced = slice_config(make_config(2), 2, 1)

        assert sliced['units'] == []

    def test_expected_outputs(self):
        """Test expected names are basenames of every unit output."""
        names = expected_outputs(make_config(2))

        assert names == ['unit0.css', 'unit0.js', 'unit1.css', 'unit1.js']

    def test_expected_outputs_filtered(self):
        """Test the filename filter narrows the expected names."""
        names = expected_outputs(make_config(2), r"\.js$")

        assert names == ['unit0.js', 'unit1.js']


class TestArchive:
    """Test project archiving."""

    def test_archive_and_extract(self, tmp_path):
        """Test archiving skips excluded directories and extracts cleanly."""
        project = tmp_path / "project"
        (project / "src").mkdir(parents=True)
        (project / "src" / "app.py").write_text("print('hi')\n")
        (project / ".git").mkdir()
        (project / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        (project / "build.config.json").write_text("{}")

        archive = project / "dist.zip"
        written = archive_project(str(project), str(archive))

        assert written == 2
        with zipfile.ZipFile(archive) as zf:
            names = sorted(zf.namelist())
        assert names == ['build.config.json', os.path.join('src', 'app.py')]

        destination = tmp_path / "node"
        extract_archive(str(archive), str(destination))

        assert (destination / "src" / "app.py").read_text() == "print('hi')\n"
        assert not (destination / ".git").exists()
