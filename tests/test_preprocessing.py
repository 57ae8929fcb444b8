import json

import numpy as np
import pytest
from PIL import Image

from embedkit.preprocessing import (
    CenterCrop,
    Compose,
    ConvertToRGB,
    Normalize,
    PILToNDArray,
    PreprocessorError,
    Rescale,
    Resize,
    compose_from_bytes,
    compose_from_file,
    load_preprocessor,
)


def solid(width, height, color=(10, 20, 30), mode="RGB"):
    return Image.new(mode, (width, height), color)


CLIP_CONFIG = {
    "image_processor_type": "CLIPImageProcessor",
    "do_resize": True,
    "size": {"shortest_edge": 32},
    "do_center_crop": True,
    "crop_size": 32,
    "do_rescale": True,
    "do_normalize": True,
    "image_mean": [0.5, 0.5, 0.5],
    "image_std": [0.5, 0.5, 0.5],
}


def test_clip_pipeline_output_shape_and_dtype():
    pipeline = load_preprocessor(CLIP_CONFIG)
    out = pipeline(solid(50, 40))
    assert out.shape == (3, 32, 32)
    assert out.dtype == np.float32


def test_clip_pipeline_normalized_range():
    pipeline = load_preprocessor(CLIP_CONFIG)
    out = pipeline(solid(50, 40, (255, 0, 128)))
    assert np.all(out >= -1.0 - 1e-5)
    assert np.all(out <= 1.0 + 1e-5)
    assert np.allclose(out[0], 1.0)
    assert np.allclose(out[1], -1.0)


def test_transform_order_for_clip():
    pipeline = load_preprocessor(CLIP_CONFIG)
    kinds = [type(t) for t in pipeline.transforms]
    assert kinds == [ConvertToRGB, Resize, CenterCrop, PILToNDArray, Rescale, Normalize]


def test_missing_processor_type_defaults_to_clip():
    pipeline = load_preprocessor({"do_rescale": False})
    assert [type(t) for t in pipeline.transforms] == [ConvertToRGB, PILToNDArray]


def test_no_rescale_keeps_raw_pixel_values():
    pipeline = load_preprocessor({"do_rescale": False})
    out = pipeline(solid(3, 2, (10, 20, 30)))
    assert out.shape == (3, 2, 3)
    assert np.all(out[0] == 10)
    assert np.all(out[1] == 20)
    assert np.all(out[2] == 30)


def test_default_rescale_maps_full_intensity_to_one():
    pipeline = load_preprocessor({})
    out = pipeline(solid(2, 2, (255, 0, 0)))
    assert np.allclose(out[0], 1.0)
    assert np.allclose(out[1:], 0.0)


def test_custom_rescale_factor():
    pipeline = load_preprocessor({"rescale_factor": 0.5})
    out = pipeline(solid(2, 2, (10, 20, 30)))
    assert np.allclose(out[0], 5.0)


def test_resize_height_width_order_is_kept():
    pipeline = load_preprocessor(
        {"do_resize": True, "size": {"height": 20, "width": 10}, "do_rescale": False}
    )
    resize = pipeline.transforms[1]
    assert resize.size == (20, 10)
    out = pipeline(solid(7, 7))
    assert out.shape == (3, 10, 20)


def test_resize_without_size_keys_fails():
    with pytest.raises(PreprocessorError, match="shortest_edge"):
        load_preprocessor({"do_resize": True, "size": {"height": 3}})


def test_crop_size_object():
    pipeline = load_preprocessor(
        {"do_center_crop": True, "crop_size": {"height": 4, "width": 6}}
    )
    crop = pipeline.transforms[1]
    assert crop.size == (6, 4)


def test_crop_size_object_missing_width():
    with pytest.raises(PreprocessorError, match="width"):
        load_preprocessor({"do_center_crop": True, "crop_size": {"height": 4}})


def test_invalid_crop_size():
    with pytest.raises(PreprocessorError, match="Invalid crop size"):
        load_preprocessor({"do_center_crop": True, "crop_size": "big"})


def test_unsupported_processor():
    with pytest.raises(PreprocessorError, match="Preprocessor Foo is not supported"):
        load_preprocessor({"image_processor_type": "Foo"})


def test_convnext_small_edge_resizes_then_crops():
    pipeline = load_preprocessor(
        {"image_processor_type": "ConvNextFeatureExtractor", "size": {"shortest_edge": 64}}
    )
    kinds = [type(t) for t in pipeline.transforms]
    assert kinds == [ConvertToRGB, Resize, CenterCrop, PILToNDArray, Rescale]
    assert pipeline(solid(100, 90)).shape == (3, 64, 64)


def test_convnext_large_edge_only_resizes():
    pipeline = load_preprocessor(
        {"image_processor_type": "ConvNextFeatureExtractor", "size": {"shortest_edge": 384}}
    )
    kinds = [type(t) for t in pipeline.transforms]
    assert kinds == [ConvertToRGB, Resize, PILToNDArray, Rescale]
    assert pipeline.transforms[1].size == (384, 384)


def test_convnext_requires_shortest_edge():
    with pytest.raises(PreprocessorError, match="shortest_edge"):
        load_preprocessor({"image_processor_type": "ConvNextFeatureExtractor", "size": {}})


def test_bit_processor_adds_extra_rgb_conversion():
    pipeline = load_preprocessor(
        {
            "image_processor_type": "BitImageProcessor",
            "do_convert_rgb": True,
            "do_resize": True,
            "size": {"shortest_edge": 8},
        }
    )
    kinds = [type(t) for t in pipeline.transforms]
    assert kinds.count(ConvertToRGB) == 2
    assert pipeline(solid(20, 20, mode="L", color=128)).shape == (3, 8, 8)


def test_normalize_requires_mean():
    with pytest.raises(PreprocessorError, match="image_mean must be contained"):
        load_preprocessor({"do_normalize": True, "image_std": [1, 1, 1]})


def test_normalize_rejects_non_numeric_std():
    with pytest.raises(PreprocessorError, match="image_std must be float"):
        load_preprocessor(
            {"do_normalize": True, "image_mean": [0, 0, 0], "image_std": ["a", 1, 1]}
        )


def test_center_crop_inside_image():
    out = CenterCrop(size=(4, 4))(solid(10, 8))
    assert isinstance(out, Image.Image)
    assert out.size == (4, 4)


def test_center_crop_pads_small_image():
    out = CenterCrop(size=(4, 4))(solid(2, 2, (10, 20, 30)))
    assert out.shape == (3, 4, 4)
    assert np.all(out[:, 1:3, 1:3][0] == 10)
    assert np.all(out[:, 1:3, 1:3][2] == 30)
    assert np.all(out[:, 0, :] == 0)
    assert np.all(out[:, :, 3] == 0)


def test_center_crop_partially_larger_image():
    out = CenterCrop(size=(4, 4))(solid(6, 2, (10, 20, 30)))
    assert out.shape == (3, 4, 4)
    assert np.all(out[1, 1:3, :] == 20)
    assert np.all(out[:, 0, :] == 0)
    assert np.all(out[:, 3, :] == 0)


def test_pil_to_ndarray_passes_arrays_through():
    array = np.ones((3, 2, 2), dtype=np.float32)
    assert PILToNDArray()(array) is array


def test_rescale_rejects_image():
    with pytest.raises(PreprocessorError, match="convert error"):
        Rescale(scale=2.0)(solid(2, 2))


def test_convert_rejects_array():
    with pytest.raises(PreprocessorError, match="convert error"):
        ConvertToRGB()(np.zeros((3, 2, 2), dtype=np.float32))


def test_normalize_wrong_mean_length():
    with pytest.raises(PreprocessorError, match="mean"):
        Normalize(mean=(0.0, 0.0), std=(1.0, 1.0, 1.0))(np.zeros((3, 2, 2), dtype=np.float32))


def test_normalize_wrong_rank():
    with pytest.raises(PreprocessorError, match="error shape"):
        Normalize(mean=(0, 0, 0), std=(1, 1, 1))(np.zeros((3, 2), dtype=np.float32))


def test_normalize_identity():
    array = np.arange(12, dtype=np.float32).reshape(3, 2, 2)
    out = Normalize(mean=(0, 0, 0), std=(1, 1, 1))(array)
    assert np.array_equal(out, array)


def test_empty_compose_is_identity():
    image = solid(3, 3)
    assert Compose()(image) is image


def test_compose_from_bytes_matches_dict():
    from_bytes = compose_from_bytes(json.dumps(CLIP_CONFIG).encode())
    assert from_bytes == load_preprocessor(CLIP_CONFIG)


def test_compose_from_bytes_invalid_json():
    with pytest.raises(PreprocessorError):
        compose_from_bytes(b"{not json")


def test_compose_from_file(tmp_path):
    path = tmp_path / "preprocessor_config.json"
    path.write_text(json.dumps(CLIP_CONFIG), encoding="utf-8")
    pipeline = compose_from_file(path)
    assert pipeline(solid(40, 60)).shape == (3, 32, 32)