"""Pytest configuration and shared fixtures for swarmfetch tests."""

from __future__ import annotations

import logging
import os

import pytest

from swarmfetch.config.config import reset_config


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("asyncio", "marks tests as async (deselect with '-m \"not asyncio\"')"),
        ("unit", "marks tests as unit tests"),
        ("integration", "marks tests as integration tests"),
        ("core", "marks tests as core functionality tests"),
        ("config", "marks tests as configuration tests"),
        ("peer", "marks tests as peer protocol tests"),
        ("piece", "marks tests as piece management tests"),
        ("discovery", "marks tests as DHT discovery tests"),
        ("metadata", "marks tests as metadata exchange tests"),
        ("session", "marks tests as session management tests"),
        ("observability", "marks tests as observability tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _isolate_config_env(monkeypatch, tmp_path):
    """Keep the user's environment and config files out of the tests."""
    for name in list(os.environ):
        if name.startswith("SWARMFETCH_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    # Clean up all handlers to prevent "I/O operation on closed file" errors
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    # setup_logging() stops propagation on the package logger; restore it so
    # caplog keeps seeing records in later tests
    package_logger = logging.getLogger("swarmfetch")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
