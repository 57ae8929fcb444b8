"""Image preprocessing pipelines built from preprocessor configuration files."""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Union

import numpy as np
from PIL import Image

TransformData = Union[Image.Image, np.ndarray]

_DEFAULT_RESCALE = 1.0 / 255.0
_DEFAULT_CROP_PCT = 0.875
_CONVNEXT_CROP_THRESHOLD = 384


class PreprocessorError(ValueError):
    """Raised when a preprocessor cannot be built or a transform cannot be applied."""


def _require_image(data: TransformData) -> Image.Image:
    if not isinstance(data, Image.Image):
        raise PreprocessorError("TransformData convert error")
    return data


def _require_array(data: TransformData) -> np.ndarray:
    if not isinstance(data, np.ndarray):
        raise PreprocessorError("TransformData convert error")
    return data


def _to_chw(image: Image.Image) -> np.ndarray:
    """Convert an image to a float32 array laid out as channel, height, width."""
    pixels = np.asarray(image.convert("RGB"), dtype=np.float32)
    return np.ascontiguousarray(pixels.transpose(2, 0, 1))


class Transform(ABC):
    """A single step that turns an image or array into an image or array."""

    @abstractmethod
    def __call__(self, data: TransformData) -> TransformData:
        """Apply the step to ``data``."""


@dataclass(frozen=True)
class ConvertToRGB(Transform):
    """Convert an image to 8-bit RGB."""

    def __call__(self, data: TransformData) -> TransformData:
        return _require_image(data).convert("RGB")


@dataclass(frozen=True)
class Resize(Transform):
    """Resize an image to exactly ``size`` (first value is the new width)."""

    size: tuple[int, int]
    resample: Image.Resampling = Image.Resampling.BICUBIC

    def __call__(self, data: TransformData) -> TransformData:
        image = _require_image(data)
        width, height = self.size
        return image.resize((width, height), resample=self.resample)


@dataclass(frozen=True)
class CenterCrop(Transform):
    """Crop the centre ``size`` (width, height) of an image.

    An image smaller than the crop in either dimension is centred on a zero
    background and returned as a channel-first array instead of an image.
    """

    size: tuple[int, int]

    def __call__(self, data: TransformData) -> TransformData:
        image = _require_image(data)
        origin_width, origin_height = image.size
        crop_width, crop_height = self.size

        if origin_width >= crop_width and origin_height >= crop_height:
            x = (origin_width - crop_width) // 2
            y = (origin_height - crop_height) // 2
            return image.crop((x, y, x + crop_width, y + crop_height))

        if origin_width > crop_width or origin_height > crop_height:
            new_width = min(origin_width, crop_width)
            new_height = min(origin_height, crop_height)
            if origin_width > crop_width:
                x, y = (origin_width - crop_width) // 2, 0
            else:
                x, y = 0, (origin_height - crop_height) // 2
            image = image.crop((x, y, x + new_width, y + new_height))
            origin_width, origin_height = image.size

        canvas = np.zeros((3, crop_width, crop_height), dtype=np.float32)
        offset_x = (crop_width - origin_width) // 2
        offset_y = (crop_height - origin_height) // 2
        try:
            canvas[
                :,
                offset_y : offset_y + origin_height,
                offset_x : offset_x + origin_width,
            ] = _to_chw(image)
        except ValueError as exc:
            raise PreprocessorError(
                f"Cannot centre a {origin_width}x{origin_height} image in a "
                f"{crop_width}x{crop_height} crop"
            ) from exc
        return canvas


@dataclass(frozen=True)
class PILToNDArray(Transform):
    """Turn an image into a float32 channel-first array; arrays pass through."""

    def __call__(self, data: TransformData) -> TransformData:
        if isinstance(data, Image.Image):
            return _to_chw(data)
        return data


@dataclass(frozen=True)
class Rescale(Transform):
    """Multiply every array value by ``scale``."""

    scale: float

    def __call__(self, data: TransformData) -> TransformData:
        array = _require_array(data)
        return (array * np.float32(self.scale)).astype(np.float32)


@dataclass(frozen=True)
class Normalize(Transform):
    """Subtract a per-channel mean and divide by a per-channel deviation."""

    mean: tuple[float, ...]
    std: tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "mean", tuple(self.mean))
        object.__setattr__(self, "std", tuple(self.std))

    def __call__(self, data: TransformData) -> TransformData:
        array = _require_array(data)
        try:
            mean = np.asarray(self.mean, dtype=np.float32).reshape(3, 1, 1)
        except ValueError as exc:
            raise PreprocessorError(f"Failed to reshape mean array: {exc}") from exc
        try:
            std = np.asarray(self.std, dtype=np.float32).reshape(3, 1, 1)
        except ValueError as exc:
            raise PreprocessorError(f"Failed to reshape std array: {exc}") from exc
        if array.ndim != 3:
            raise PreprocessorError(
                "Transformer convert error. Normalize operator got error shape."
            )
        if array.shape[0] != 3:
            raise PreprocessorError(
                f"Failed to broadcast mean array to shape {array.shape}"
            )
        return ((array - mean) / std).astype(np.float32)


@dataclass(frozen=True)
class Compose(Transform):
    """Apply a sequence of transforms in order."""

    transforms: tuple[Transform, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "transforms", tuple(self.transforms))

    def __call__(self, data: TransformData) -> TransformData:
        for transform in self.transforms:
            data = transform(data)
        return data


def _get(document: Any, key: str) -> Any:
    return document.get(key) if isinstance(document, dict) else None


def _as_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _as_u64(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


def _as_f64(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def _resize_and_crop(config: Any) -> Iterable[Transform]:
    if _as_bool(_get(config, "do_resize")):
        size = _get(config, "size")
        shortest_edge = _as_u64(_get(size, "shortest_edge"))
        height = _as_u64(_get(size, "height"))
        width = _as_u64(_get(size, "width"))
        if shortest_edge is not None:
            yield Resize(size=(shortest_edge, shortest_edge))
        elif height is not None and width is not None:
            yield Resize(size=(height, width))
        else:
            raise PreprocessorError(
                "Size must contain either 'shortest_edge' or 'height' and 'width'."
            )

    if _as_bool(_get(config, "do_center_crop")):
        crop_size = _get(config, "crop_size")
        if _as_u64(crop_size) is not None:
            height = width = crop_size
        elif isinstance(crop_size, dict):
            height = _as_u64(crop_size.get("height"))
            if height is None:
                raise PreprocessorError("crop_size height must be contained")
            width = _as_u64(crop_size.get("width"))
            if width is None:
                raise PreprocessorError("crop_size width must be contained")
        else:
            raise PreprocessorError(f"Invalid crop size: {crop_size!r}")
        yield CenterCrop(size=(width, height))


def _convnext_steps(config: Any) -> Iterable[Transform]:
    shortest_edge = _as_u64(_get(_get(config, "size"), "shortest_edge"))
    if shortest_edge is None:
        raise PreprocessorError("Size dictionary must contain 'shortest_edge' key.")
    crop_pct = _as_f64(_get(config, "crop_pct"))
    if crop_pct is None:
        crop_pct = _DEFAULT_CROP_PCT
    if shortest_edge < _CONVNEXT_CROP_THRESHOLD:
        resized = int(shortest_edge / crop_pct)
        yield Resize(size=(resized, resized))
        yield CenterCrop(size=(shortest_edge, shortest_edge))
    else:
        yield Resize(size=(shortest_edge, shortest_edge))


def _float_list(config: Any, key: str) -> tuple[float, ...]:
    values = _get(config, key)
    if not isinstance(values, list):
        raise PreprocessorError(f"{key} must be contained")
    numbers = tuple(_as_f64(value) for value in values)
    if any(number is None for number in numbers):
        raise PreprocessorError(f"{key} must be float")
    return numbers  # type: ignore[return-value]


def load_preprocessor(config: Any) -> Compose:
    """Build the preprocessing pipeline described by a parsed configuration."""
    transforms: list[Transform] = [ConvertToRGB()]

    mode = _get(config, "image_processor_type")
    if not isinstance(mode, str):
        mode = "CLIPImageProcessor"

    if mode == "CLIPImageProcessor":
        transforms.extend(_resize_and_crop(config))
    elif mode == "ConvNextFeatureExtractor":
        transforms.extend(_convnext_steps(config))
    elif mode == "BitImageProcessor":
        if _as_bool(_get(config, "do_convert_rgb")):
            transforms.append(ConvertToRGB())
        transforms.extend(_resize_and_crop(config))
    else:
        raise PreprocessorError(f"Preprocessor {mode} is not supported")

    transforms.append(PILToNDArray())

    do_rescale = _as_bool(_get(config, "do_rescale"))
    if do_rescale is None or do_rescale:
        factor = _as_f64(_get(config, "rescale_factor"))
        transforms.append(Rescale(scale=_DEFAULT_RESCALE if factor is None else factor))

    if _as_bool(_get(config, "do_normalize")):
        mean = _float_list(config, "image_mean")
        std = _float_list(config, "image_std")
        transforms.append(Normalize(mean=mean, std=std))

    return Compose(transforms=tuple(transforms))


def compose_from_bytes(data: bytes | str) -> Compose:
    """Build a pipeline from the raw contents of a preprocessor configuration."""
    try:
        config = json.loads(data)
    except ValueError as exc:
        raise PreprocessorError(f"Invalid preprocessor configuration: {exc}") from exc
    return load_preprocessor(config)


def compose_from_file(path: str | os.PathLike) -> Compose:
    """Build a pipeline from a preprocessor configuration file."""
    with open(path, encoding="utf-8") as handle:
        content = handle.read()
    return compose_from_bytes(content)