"""Shared pytest fixtures for the dircache test suite."""

from tests.fixtures.cache_data import clock, sample_records  # noqa: F401
