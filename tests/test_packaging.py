"""Packaging regression tests.

Tests that verify the source layout and the installed import surface.
"""

from pathlib import Path


def test_source_layout():
    """The package lives under src/ with kernel and _internal subpackages."""
    here = Path(__file__).resolve().parent
    repo_root = here.parent
    src_datalock = repo_root / "src" / "datalock"

    assert src_datalock.exists(), "datalock package should exist in src/"
    assert (src_datalock / "kernel").exists(), "datalock.kernel should exist"
    assert (src_datalock / "_internal").exists(), "datalock._internal should exist"
    assert (repo_root / "pyproject.toml").exists()


def test_import_surface():
    import datalock
    import datalock.kernel.hash_utils  # noqa: F401

    assert isinstance(datalock.__version__, str)
    for name in datalock.__all__:
        assert hasattr(datalock, name), name


def test_entry_point_callable():
    from datalock.cli import main

    assert callable(main)
