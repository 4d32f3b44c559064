"""
Pytest configuration and fixtures for device integrity tests.
"""

import os

import pytest

from attestation_factories import AssertionFactory, ChainFactory

# Set test environment
os.environ["ENVIRONMENT"] = "test"


@pytest.fixture(scope="session")
def chain_factory():
    """Keys are expensive enough to share across the session."""
    return ChainFactory()


@pytest.fixture
def assertion_factory():
    """A fresh device key per test."""
    return AssertionFactory()
