"""
Shared pytest fixtures for the IntentMesh test suite.

Every fixture works on a real IntentStore under pytest's tmp_path, wired
to scriptable in-memory collaborators (see tests/factories.py). No LLM,
network or git access is needed unless a test is marked requires_git.

Usage in tests:
    def test_something(mesh_factory):
        intent = mesh_factory.add_intent("Title", "Statement")
        mesh = mesh_factory.create_mesh()
"""

import pytest

from tests.factories import MeshTestFactory


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep user config and provider keys from leaking into tests."""
    for name in ("INTENTMESH_LLM_PROVIDER", "INTENTMESH_LLM_MODEL", "INTENTMESH_BATCH_SIZE",
                 "INTENTMESH_GROUPING", "INTENTMESH_PROJECT_PATH",
                 "OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def mesh_factory(tmp_path):
    """Empty environment with per-range grouping."""
    return MeshTestFactory(tmp_path)


@pytest.fixture
def file_factory(tmp_path):
    """Empty environment with per-file grouping."""
    return MeshTestFactory(tmp_path, grouping="per_file")


@pytest.fixture
def store(mesh_factory):
    return mesh_factory.store
