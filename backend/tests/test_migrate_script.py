from __future__ import annotations

import pytest

from lumi.config import get_settings
from lumi.db.session import build_engine, build_session_factory, session_scope
from lumi.local_store import FileKeyValueStore, LocalStore
from lumi.repositories.badges import badge_repository
from scripts import migrate_local_store


@pytest.fixture()
def database_env(monkeypatch, tmp_path):
    url = f"sqlite:///{tmp_path / 'lumi.db'}"
    monkeypatch.setenv("LUMI_REMOTE_ENABLED", "true")
    monkeypatch.setenv("LUMI_REMOTE_BACKEND", "database")
    monkeypatch.setenv("LUMI_DATABASE_URL", url)
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


def _seed(directory) -> None:
    store = LocalStore(FileKeyValueStore(directory))
    store.append_badge("Petar", "First Steps")
    store.append_badge("Petar", "Explorer", "🧭")
    store.append_badge("Ivan", "Night Owl")


def _remote_badge_names(url: str, username: str) -> list[str]:
    engine = build_engine(url, get_settings())
    try:
        with session_scope(commit=False, factory=build_session_factory(engine)) as session:
            user_id = badge_repository.find_user_id(session, username)
            assert user_id is not None
            return [badge.name for badge in badge_repository.list_badges(session, user_id)]
    finally:
        engine.dispose()


def test_migrates_every_user_into_database(database_env, tmp_path) -> None:
    local_dir = tmp_path / "local"
    _seed(local_dir)

    exit_code = migrate_local_store.main(["--all", "--verify", "--init-schema", "--local-store", str(local_dir)])

    assert exit_code == 0
    assert _remote_badge_names(database_env, "Petar") == ["First Steps", "Explorer"]
    assert _remote_badge_names(database_env, "Ivan") == ["Night Owl"]


def test_migrates_selected_users_only(database_env, tmp_path) -> None:
    local_dir = tmp_path / "local"
    _seed(local_dir)

    exit_code = migrate_local_store.main(["--user", "Ivan", "--init-schema", "--local-store", str(local_dir)])

    assert exit_code == 0
    assert _remote_badge_names(database_env, "Ivan") == ["Night Owl"]


def test_refuses_to_run_without_remote_backend(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("LUMI_REMOTE_ENABLED", "false")
    get_settings.cache_clear()
    try:
        assert migrate_local_store.main(["--all"]) == 1
    finally:
        get_settings.cache_clear()


def test_user_and_all_are_mutually_exclusive() -> None:
    with pytest.raises(SystemExit):
        migrate_local_store.parse_args(["--all", "--user", "Ivan"])
