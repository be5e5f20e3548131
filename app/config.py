from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, ClassVar
from urllib.parse import urlparse

from pydantic import (
    AfterValidator,
    BaseModel,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationInfo,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource, YamlConfigSettingsSource

from domain.models import normalize_platform

DEFAULT_CONFIG_PATH = Path("config/app.yaml")
CONFIG_PATH_ENV = "SCREENFLOW_CONFIG_PATH"

_HTTP_URL_ADAPTER = TypeAdapter(HttpUrl)


def _validate_endpoint_url(value: str) -> str:
    normalized = str(value or "").strip()
    if not normalized:
        return ""
    _HTTP_URL_ADAPTER.validate_python(normalized)
    return normalized


def _validate_stylesheet_href(value: str) -> str:
    normalized = str(value or "").strip()
    if not normalized:
        return ""
    scheme = urlparse(normalized).scheme.lower()
    if scheme and scheme not in {"http", "https"}:
        msg = f"prototype.stylesheet_href must be an http(s) URL or a relative path, got {value!r}"
        raise ValueError(msg)
    return normalized


EndpointUrl = Annotated[str, AfterValidator(_validate_endpoint_url)]
StylesheetHref = Annotated[str, AfterValidator(_validate_stylesheet_href)]


class StorageSettings(BaseModel):
    projects_dir: Path = Path("data/projects")
    prototypes_dir: Path = Path("data/prototypes")


class PlatformGridSettings(BaseModel):
    gap_x: float | None = Field(default=None, ge=0)
    gap_y: float | None = Field(default=None, ge=0)


class CanvasSettings(BaseModel):
    overlap_offset: float = 32.0
    arrow_clearance: float = Field(default=6.0, ge=0)
    fan_angle_degrees: float = Field(default=14.0, ge=0, le=45)
    curvature: float = Field(default=0.4, ge=0)
    fit_padding: float = Field(default=80.0, ge=0)
    min_zoom: float = Field(default=0.05, gt=0)
    max_zoom: float = Field(default=1.0, gt=0)
    mobile: PlatformGridSettings = PlatformGridSettings()
    desktop: PlatformGridSettings = PlatformGridSettings()

    @field_validator("max_zoom", mode="after")
    @classmethod
    def ensure_zoom_range(cls, value: float, info: ValidationInfo) -> float:
        min_zoom = info.data.get("min_zoom")
        if min_zoom is not None and value < min_zoom:
            msg = "canvas.max_zoom must not be lower than canvas.min_zoom"
            raise ValueError(msg)
        return value


class PrototypeSettings(BaseModel):
    stylesheet_href: StylesheetHref | None = None
    highlight_hotspots: bool = False


class GeneratorSettings(BaseModel):
    endpoint_url: EndpointUrl | None = None
    timeout_seconds: float = Field(default=120.0, gt=0)
    api_key: str | None = None


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SCREENFLOW_", env_nested_delimiter="__")

    title: str = "Screen Flow"
    default_platform: str = "mobile"
    storage: StorageSettings = StorageSettings()
    canvas: CanvasSettings = CanvasSettings()
    prototype: PrototypeSettings = PrototypeSettings()
    generator: GeneratorSettings = GeneratorSettings()

    _yaml_path: ClassVar[Path | None] = None

    @field_validator("default_platform", mode="before")
    @classmethod
    def ensure_known_platform(cls, value: object) -> str:
        return normalize_platform(value)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        ]
        if cls._yaml_path:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=cls._yaml_path))
        return tuple(sources)


def load_settings(config_path: Path | None = None) -> AppSettings:
    env_path = os.getenv(CONFIG_PATH_ENV)
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = config_path
    elif env_path:
        resolved_path = Path(env_path)
    elif DEFAULT_CONFIG_PATH.exists():
        resolved_path = DEFAULT_CONFIG_PATH

    previous = AppSettings._yaml_path
    try:
        if resolved_path is not None:
            if not resolved_path.exists():
                msg = f"Config file not found: {resolved_path}"
                raise FileNotFoundError(msg)
            AppSettings._yaml_path = resolved_path
        return AppSettings()
    finally:
        AppSettings._yaml_path = previous
