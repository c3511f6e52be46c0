"""Shared fixtures and helpers for the compiler phase tests."""

import pytest

import compiler_phases
from app import app as flask_app


@pytest.fixture
def client():
    """Flask test client with testing enabled."""
    flask_app.config.update(TESTING=True)
    with flask_app.test_client() as client:
        yield client


@pytest.fixture
def run():
    """Run the pipeline up to a phase and return the raw result dict."""
    def _run(code, until='target'):
        return compiler_phases.run_pipeline(code, until=until)
    return _run


@pytest.fixture
def ir(run):
    """Intermediate code for a source string, as text lines."""
    def _ir(code):
        return [repr(i) for i in run(code, 'intermediate')['tac']]
    return _ir


@pytest.fixture
def optimized(run):
    """Optimized intermediate code for a source string, as text lines."""
    def _optimized(code):
        return [repr(i) for i in run(code, 'optimized')['optimized_tac']]
    return _optimized
