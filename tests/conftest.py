"""Root test configuration."""

import logging

import pytest
import structlog

from secretmangler.mangler.models import CascadeMode, ObjectRef, Secret, SecretMangler, SecretTemplate
from secretmangler.store.memory import InMemorySecretStore


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _make_mangler(
    name="mangler",
    namespace="default",
    mappings=None,
    cascade_mode=CascadeMode.KEEP_NO_ACTION,
    target_name="mangled-secret",
    target_namespace=None,
    uid="uid-1234",
):
    """Build a SecretMangler whose target defaults to its own namespace."""
    return SecretMangler(
        name=name,
        namespace=namespace,
        template=SecretTemplate(
            name=target_name,
            namespace=target_namespace or namespace,
            mappings=dict(mappings or {}),
            cascade_mode=cascade_mode,
        ),
        uid=uid,
    )


def _make_secret(name, namespace="default", **data):
    """Build a source Secret from keyword string values."""
    return Secret(
        name=name,
        namespace=namespace,
        data={key: value.encode() for key, value in data.items()},
    )


@pytest.fixture
def make_mangler():
    return _make_mangler


@pytest.fixture
def make_secret():
    return _make_secret


@pytest.fixture
def store():
    return InMemorySecretStore()


@pytest.fixture
def target():
    return ObjectRef("default", "mangled-secret")
