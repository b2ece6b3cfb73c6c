from __future__ import annotations

from adapters.session_store import SessionFileStore


def test_clear_removes_session_and_journal(tmp_path) -> None:
    (tmp_path / "relay.session").write_bytes(b"sqlite")
    (tmp_path / "relay.session-journal").write_bytes(b"")
    store = SessionFileStore("relay", directory=str(tmp_path))
    assert store.exists()
    store.clear()
    assert not store.exists()
    assert list(tmp_path.iterdir()) == []


def test_clear_without_files_is_harmless(tmp_path) -> None:
    store = SessionFileStore("relay.session", directory=str(tmp_path))
    store.clear()
    assert store.paths[0].endswith("relay.session")
