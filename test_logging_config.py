"""
test_logging_config.py - Log level resolution and handler setup.

Usage:
    pytest test_logging_config.py
"""

from __future__ import annotations

import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from logging_config import level_from_env, setup_logging


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.parametrize(
    "raw,expected",
    [("debug", logging.DEBUG), ("WARNING", logging.WARNING), ("10", 10), ("", logging.INFO), ("chatty", logging.INFO)],
)
def test_level_from_env(monkeypatch, raw, expected):
    monkeypatch.setenv("LOG_LEVEL", raw)
    assert level_from_env() == expected


def test_setup_logging_installs_one_handler(restore_root, monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    setup_logging()
    setup_logging(json_format=True)
    assert len(restore_root.handlers) == 1
    assert restore_root.level == logging.INFO
    assert restore_root.handlers[0].formatter._fmt.startswith('{"timestamp"')


def test_explicit_level_wins(restore_root, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    setup_logging(logging.DEBUG)
    assert restore_root.level == logging.DEBUG
