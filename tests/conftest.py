"""
Global pytest fixtures for ct2bind tests.

This module provides:
- Fault handling for native crashes
- The instrumented fake engine (``fake_lib``), installed in place of libct2c
- Model directory and runner fixtures

Tests never need the real libct2c: ``fake_lib`` implements every entry point
in Python on top of the real ctypes structures, so the bindings exercise
their actual marshalling code.
"""

import faulthandler
import gc

import pytest

from tests.fixtures.fake_engine import FakeNativeLibrary

# Enable faulthandler to trace native crashes (segfaults)
faulthandler.enable()


# =============================================================================
# Native Library
# =============================================================================


@pytest.fixture
def fake_lib():
    """
    Install a fresh FakeNativeLibrary for the duration of a test.

    Objects leaked by the test are collected before the previous library is
    restored, so their finalizers release into the fake that created them.
    """
    from ct2bind import _bindings

    fake = FakeNativeLibrary()
    previous = _bindings.set_lib(fake)
    try:
        yield fake
    finally:
        gc.collect()
        _bindings.set_lib(previous)


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def model_dir(tmp_path):
    """Directory laid out like a converted model."""
    path = tmp_path / "ende_ctranslate2"
    path.mkdir()
    (path / "model.bin").write_bytes(b"\x00" * 16)
    (path / "config.json").write_text('{"add_source_bos": false}')
    (path / "shared_vocabulary.json").write_text('["<unk>", "<s>", "</s>"]')
    return path


@pytest.fixture
def translator(fake_lib, model_dir):
    from ct2bind import Translator

    with Translator(model_dir) as runner:
        yield runner


@pytest.fixture
def generator(fake_lib, model_dir):
    from ct2bind import Generator

    with Generator(model_dir) as runner:
        yield runner


@pytest.fixture
def whisper(fake_lib, model_dir):
    from ct2bind import Whisper

    with Whisper(model_dir) as runner:
        yield runner


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "memory: marks handle leak detection tests")
