"""Pytest configuration and fixtures."""

import pytest


@pytest.fixture
def write_csv(tmp_path):
    """Write a CSV file from raw lines and return its path as a string."""
    def _write(name, *lines, encoding="utf-8"):
        path = tmp_path / name
        path.write_text("".join(f"{line}\n" for line in lines), encoding=encoding)
        return str(path)

    return _write


@pytest.fixture
def missing_file(tmp_path):
    """Path that does not exist."""
    return str(tmp_path / "does_not_exist.csv")
