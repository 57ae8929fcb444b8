"""Image embeddings computed by running preprocessed pixels through an inference session."""

from __future__ import annotations

import io
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import islice
from typing import Any, Iterable, Iterator, Mapping, Sequence, TypeVar

import numpy as np
from PIL import Image, UnidentifiedImageError

from embedkit.common import Embedding, normalize
from embedkit.preprocessing import PreprocessorError, Transform

DEFAULT_BATCH_SIZE = 256

_KNOWN_OUTPUT_KEYS = ("image_embeds", "last_hidden_state")

T = TypeVar("T")


class Session(ABC):
    """An inference session that maps named input tensors to named output tensors."""

    @property
    @abstractmethod
    def input_names(self) -> Sequence[str]:
        """Names of the model inputs, in declaration order."""

    @abstractmethod
    def run(self, inputs: Mapping[str, np.ndarray]) -> Mapping[str, Any]:
        """Run the model on ``inputs`` and return its outputs by name."""


def _batches(items: Sequence[T], batch_size: int) -> Iterator[list[T]]:
    iterator = iter(items)
    while batch := list(islice(iterator, batch_size)):
        yield batch


def _resolve_batch_size(batch_size: int | None) -> int:
    if batch_size is None:
        return DEFAULT_BATCH_SIZE
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    return batch_size


def _decode(source: Any) -> Image.Image:
    try:
        with Image.open(source) as image:
            image.load()
            return image.copy()
    except FileNotFoundError:
        raise
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ValueError(f"image decode: {exc}") from exc


def _float32_tensor(value: Any) -> np.ndarray | None:
    if value is None:
        return None
    array = np.asarray(value)
    if array.dtype != np.float32:
        return None
    return array


def extract_embeddings(outputs: Mapping[str, Any]) -> list[Embedding]:
    """Pick the embedding tensor from model outputs and return normalised rows.

    A single output is used whatever its name; otherwise ``image_embeds`` and
    then ``last_hidden_state`` are tried. A 3-D output contributes its first
    token per item, a 2-D output its rows.
    """
    if len(outputs) == 1:
        keys: Sequence[str] = tuple(outputs)
    else:
        keys = _KNOWN_OUTPUT_KEYS

    tensor = next(
        (
            array
            for array in (_float32_tensor(outputs.get(key)) for key in keys)
            if array is not None
        ),
        None,
    )
    if tensor is None:
        raise ValueError("Could not extract tensor from any known output key")

    if tensor.ndim == 3:
        return [normalize(row) for row in tensor[:, 0, :]]
    if tensor.ndim == 2:
        return [normalize(row) for row in tensor]
    raise ValueError(f"Unexpected output tensor shape: {list(tensor.shape)}")


@dataclass
class ImageEmbedding:
    """Turns images into unit-length embedding vectors."""

    preprocessor: Transform
    session: Session

    def embed(
        self, images: Sequence[str | os.PathLike], batch_size: int | None = None
    ) -> list[Embedding]:
        """Embed the images stored at the given paths, ``batch_size`` at a time."""
        size = _resolve_batch_size(batch_size)
        return [
            embedding
            for batch in _batches(list(images), size)
            for embedding in self.embed_images([_decode(path) for path in batch])
        ]

    def embed_bytes(
        self, images: Sequence[bytes], batch_size: int | None = None
    ) -> list[Embedding]:
        """Embed encoded images given as bytes, ``batch_size`` at a time."""
        size = _resolve_batch_size(batch_size)
        return [
            embedding
            for batch in _batches(list(images), size)
            for embedding in self.embed_images(
                [_decode(io.BytesIO(bytes(data))) for data in batch]
            )
        ]

    def embed_images(self, images: Iterable[Image.Image]) -> list[Embedding]:
        """Embed already decoded images as one batch."""
        arrays = []
        for image in images:
            pixels = self.preprocessor(image)
            if not isinstance(pixels, np.ndarray):
                raise PreprocessorError("Preprocessor configuration error!")
            arrays.append(pixels)

        if not arrays:
            raise ValueError("Cannot embed an empty batch of images")
        try:
            pixel_values = np.stack(arrays, axis=0).astype(np.float32)
        except ValueError as exc:
            raise ValueError(f"Cannot batch preprocessed images: {exc}") from exc

        input_name = self.session.input_names[0]
        outputs = self.session.run({input_name: pixel_values})
        return extract_embeddings(dict(outputs))