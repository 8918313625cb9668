"""Unit test fixtures: in-memory storage and engine wiring. No containers."""

from __future__ import annotations

from pathlib import Path

import pytest

from entigraph.audit import AuditLogger
from entigraph.config import AuditConfig
from entigraph.storage.memory import MemoryProvider


@pytest.fixture()
def provider() -> MemoryProvider:
    """Fresh in-memory provider (semantic search capable)."""
    return MemoryProvider()


@pytest.fixture()
def audit_logger(tmp_path: Path) -> AuditLogger:
    """Audit logger writing to a per-test JSONL file."""
    return AuditLogger(AuditConfig(file_path=str(tmp_path / "audit.jsonl")))
