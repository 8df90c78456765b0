#!/usr/bin/env python3
"""
Build the plugin ZIP for the QGIS plugin repository.

The archive holds one top-level folder (``tile_cache_exporter``) with the
runtime files only: tests, tooling and working files are left out.
"""

import configparser
import fnmatch
import os
import pathlib
import sys
import zipfile

PLUGIN_NAME = "tile_cache_exporter"

EXCLUDE_PATTERNS = [
    '.git*',
    '__pycache__',
    '*.py[co]',
    '.vscode',
    '.idea',
    '.pytest_cache',
    '*.zip',
    '*.egg-info',
    'build',
    'dist',
    'test',
    '.DS_Store',
    '*.md',
    'pyproject.toml',
    'package_plugin.py',
]

INCLUDE_EXCEPTIONS = [
    'README.md',
]


def read_version(plugin_dir):
    """Return ``version`` from metadata.txt, ``0.0.0`` if it cannot be read."""
    parser = configparser.ConfigParser(interpolation=None)
    try:
        parser.read(pathlib.Path(plugin_dir) / "metadata.txt", encoding="utf-8")
        return parser.get("general", "version").strip()
    except (configparser.Error, OSError) as e:
        print(f"Warning: Could not read version from metadata.txt: {e}")
        return "0.0.0"


def is_excluded(rel_path):
    """True if any component of ``rel_path`` matches an exclude pattern."""
    parts = pathlib.PurePath(rel_path).parts
    if parts and parts[-1] in INCLUDE_EXCEPTIONS:
        return False
    return any(fnmatch.fnmatch(part, pattern) for part in parts for pattern in EXCLUDE_PATTERNS)


def iter_plugin_files(plugin_dir):
    """Yield paths (relative to ``plugin_dir``) of the files to ship."""
    plugin_dir = pathlib.Path(plugin_dir)
    for root, dirs, files in os.walk(plugin_dir):
        rel_root = pathlib.Path(root).relative_to(plugin_dir)
        # Prune in place so os.walk skips excluded directories.
        dirs[:] = sorted(d for d in dirs if not is_excluded(rel_root / d))
        for name in sorted(files):
            rel_path = rel_root / name
            if not is_excluded(rel_path):
                yield rel_path


def create_plugin_package(plugin_dir=None, output_dir=None):
    """Write ``<PLUGIN_NAME>-<version>.zip`` and return its path."""
    plugin_dir = pathlib.Path(plugin_dir or pathlib.Path(__file__).parent).resolve()
    output_dir = pathlib.Path(output_dir or plugin_dir.parent)

    zip_path = output_dir / f"{PLUGIN_NAME}-{read_version(plugin_dir)}.zip"
    if zip_path.exists():
        zip_path.unlink()

    count = 0
    with zipfile.ZipFile(zip_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for rel_path in iter_plugin_files(plugin_dir):
            zipf.write(plugin_dir / rel_path, pathlib.PurePosixPath(PLUGIN_NAME, *rel_path.parts))
            count += 1

    print(f"Packaged {count} files into {zip_path}")
    return zip_path


if __name__ == "__main__":
    create_plugin_package(output_dir=sys.argv[1] if len(sys.argv) > 1 else None)
