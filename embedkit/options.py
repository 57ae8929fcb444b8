"""Initialisation options for embedding models."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Generic, Iterable, TypeVar

from embedkit.common import get_cache_dir

M = TypeVar("M")


def _default_cache_dir() -> Path:
    return Path(get_cache_dir())


@dataclass(frozen=True)
class InitOptions(Generic[M]):
    """Options for loading a model from the hub."""

    model_name: M
    execution_providers: tuple[Any, ...] = ()
    cache_dir: Path = field(default_factory=_default_cache_dir)
    show_download_progress: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "execution_providers", tuple(self.execution_providers))
        object.__setattr__(self, "cache_dir", Path(self.cache_dir))

    def with_cache_dir(self, cache_dir: str | os.PathLike) -> InitOptions[M]:
        """Return a copy that keeps model files in ``cache_dir``."""
        return replace(self, cache_dir=Path(cache_dir))

    def with_execution_providers(self, execution_providers: Iterable[Any]) -> InitOptions[M]:
        """Return a copy that runs on the given execution providers."""
        return replace(self, execution_providers=tuple(execution_providers))

    def with_show_download_progress(self, show_download_progress: bool) -> InitOptions[M]:
        """Return a copy with download progress shown or hidden."""
        return replace(self, show_download_progress=show_download_progress)


@dataclass(frozen=True)
class InitOptionsWithLength(InitOptions[M]):
    """Options for a model that also truncates its input to ``max_length`` tokens.

    When ``max_length`` is not given it is taken from the model's ``MAX_LENGTH``.
    """

    max_length: int | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.max_length is None:
            default = getattr(self.model_name, "MAX_LENGTH", None)
            if not isinstance(default, int):
                raise TypeError(
                    f"{self.model_name!r} defines no MAX_LENGTH; pass max_length explicitly"
                )
            object.__setattr__(self, "max_length", default)

    def with_max_length(self, max_length: int) -> InitOptionsWithLength[M]:
        """Return a copy with a different maximum input length."""
        return replace(self, max_length=max_length)

    def with_cache_dir(self, cache_dir: str | os.PathLike) -> InitOptionsWithLength[M]:
        """Return a copy that keeps model files in ``cache_dir``."""
        return replace(self, cache_dir=Path(cache_dir))

    def with_execution_providers(
        self, execution_providers: Iterable[Any]
    ) -> InitOptionsWithLength[M]:
        """Return a copy that runs on the given execution providers."""
        return replace(self, execution_providers=tuple(execution_providers))

    def with_show_download_progress(
        self, show_download_progress: bool
    ) -> InitOptionsWithLength[M]:
        """Return a copy with download progress shown or hidden."""
        return replace(self, show_download_progress=show_download_progress)


@dataclass(frozen=True)
class ImageInitOptionsUserDefined:
    """Options for an image model whose files the caller supplies."""

    execution_providers: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "execution_providers", tuple(self.execution_providers))

    def with_execution_providers(
        self, execution_providers: Iterable[Any]
    ) -> ImageInitOptionsUserDefined:
        """Return a copy that runs on the given execution providers."""
        return replace(self, execution_providers=tuple(execution_providers))


@dataclass(frozen=True)
class UserDefinedImageEmbeddingModel:
    """Raw bytes of an ONNX image model and its preprocessor configuration."""

    onnx_file: bytes
    preprocessor_file: bytes


def user_defined_options(options: InitOptions[Any]) -> ImageInitOptionsUserDefined:
    """Carry the settings that apply to user-supplied models over from hub options."""
    return ImageInitOptionsUserDefined(execution_providers=options.execution_providers)