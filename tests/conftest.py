from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from adapters.filesystem.project_repository import FileSystemProjectRepository
from app.config import AppSettings, PrototypeSettings, StorageSettings


def _clear_screenflow_env() -> None:
    for key in list(os.environ):
        if key.startswith("SCREENFLOW_"):
            os.environ.pop(key, None)


_clear_screenflow_env()


@pytest.fixture(autouse=True)
def clear_screenflow_env() -> Generator[None, None, None]:
    _clear_screenflow_env()
    yield
    _clear_screenflow_env()


@pytest.fixture
def storage_settings(tmp_path: Path) -> StorageSettings:
    return StorageSettings(
        projects_dir=tmp_path / "projects",
        prototypes_dir=tmp_path / "prototypes",
    )


@pytest.fixture
def app_settings(storage_settings: StorageSettings) -> AppSettings:
    return AppSettings(
        title="Test Screen Flow",
        default_platform="mobile",
        storage=storage_settings,
        prototype=PrototypeSettings(stylesheet_href=None, highlight_hotspots=False),
    )


@pytest.fixture
def app_settings_factory(app_settings: AppSettings) -> Callable[..., AppSettings]:
    def _factory(**overrides: object) -> AppSettings:
        return app_settings.model_copy(update=overrides)

    return _factory


@pytest.fixture
def project_repo(storage_settings: StorageSettings) -> FileSystemProjectRepository:
    return FileSystemProjectRepository(storage_settings.projects_dir)
