"""Shared fixtures for the test suite."""

from __future__ import annotations

import pytest
from helpers import make_repo, make_service

from upgrepo.models import Repository, Service


@pytest.fixture
def repo1() -> Repository:
    """First old repository."""
    return make_repo(1, "test1")


@pytest.fixture
def repo2() -> Repository:
    """Second old repository."""
    return make_repo(2, "test2")


@pytest.fixture
def extra_repo() -> Repository:
    """Repository that is never tracked."""
    return make_repo(42, "extra")


@pytest.fixture
def service1() -> Service:
    """Old service."""
    return make_service("service1")
