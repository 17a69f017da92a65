"""Shared fixtures: in-memory stores, sample documents and an isolated environment."""

import pytest

from casefile.cli.config_manager import DEFAULT_CONFIG
from casefile.core.models import Document
from casefile.core.stores import InMemoryStore

SAMPLE_TEXT = (
    "Page 1\n"
    + "Grand jury testimony recorded in Palm Beach on March 5, 2005. "
    + "Jeffrey Epstein was questioned alongside Ghislaine Maxwell. " * 6
)


@pytest.fixture
def sample_text():
    return SAMPLE_TEXT


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def add_document(store):
    """Factory that registers a document (and optionally its text) in the store."""

    def _add(doc_id, data_set="1", text=None, file_name=None):
        document = Document(
            id=doc_id,
            title=f"Document {doc_id}",
            data_set=data_set,
            file_name=file_name or f"EFTA{doc_id:05d}.pdf",
        )
        return store.add_document(document, text=text)

    return _add


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Strip every setting the CLI reads so tests never see the host's configuration."""
    names = [key.upper() for key in DEFAULT_CONFIG] + [
        "OPENAI_API_KEY",
        "LLM_INPUT_CENTS_PER_MTOK",
        "LLM_OUTPUT_CENTS_PER_MTOK",
        "MAX_CHUNK_CHARS",
        "CHUNK_DELAY_SECONDS",
        "DOCUMENT_DELAY_SECONDS",
    ]
    for name in names:
        # setenv first so teardown restores the original state
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.setenv("CASEFILE_CONFIG_DIR", str(tmp_path / "config"))
    return tmp_path
