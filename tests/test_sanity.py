"""Package sanity checks.

Confirms the package installs correctly and its public contract is intact.
These tests should always pass; a failure here means the build is broken.
"""

import logtail


def test_version_is_declared() -> None:
    assert isinstance(logtail.__version__, str)
    assert logtail.__version__  # non-empty


def test_cli_app_is_importable() -> None:
    from logtail.cli import app

    assert app is not None


def test_bundled_schema_is_present() -> None:
    from logtail.warehouse import _SQL_DIR

    assert sorted(p.name for p in _SQL_DIR.glob("*.sql")) == ["001_records.sql"]
