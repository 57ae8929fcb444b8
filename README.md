# embedkit

embedkit provides the building blocks for turning images into unit-length
embedding vectors.

- It reads an image model's `preprocessor_config.json` and builds the matching
  preprocessing pipeline.
- It batches the preprocessed pixels and passes them to an inference session
  that you provide.
- It reduces the session's output to one L2-normalised vector per image.

It also contains small helpers for cache directories, model options and
tokenizer settings.

## Installation

```
pip install embedkit
```

To run the tests:

```
pip install "embedkit[test]"
pytest
```

## Preprocessing (`embedkit.preprocessing`)

```python
from PIL import Image
from embedkit.preprocessing import compose_from_file

pipeline = compose_from_file("preprocessor_config.json")
pixels = pipeline(Image.open("cat.png"))   # float32 numpy array, shape (3, H, W)
```

There are three ways to build a pipeline:

- `load_preprocessor(config)` takes a configuration that has already been parsed into a dict.
- `compose_from_bytes(data)` takes the raw JSON as bytes or text.
- `compose_from_file(path)` reads the JSON from a file.

`image_processor_type` selects the kind of pipeline. It can be `CLIPImageProcessor`, which is the default, `ConvNextFeatureExtractor` or `BitImageProcessor`. Every pipeline does these steps in order:

1. Converts the image to RGB.
2. Resizes and/or centre-crops it, as the configuration says.
3. Turns it into a channel-first float32 array.
4. Rescales it. This is on unless `do_rescale` is false, and the default factor is 1/255.
5. Normalises it, if `do_normalize` is true.

A `PreprocessorError`, which is a subclass of `ValueError`, is raised in these cases:

- the configuration is malformed;
- the processor type is not supported;
- a step receives the wrong kind of data.

You can also build a pipeline from the transforms directly: `ConvertToRGB`, `Resize`, `CenterCrop`, `PILToNDArray`, `Rescale` and `Normalize`. Chain them with `Compose`. Every transform is a callable that subclasses `Transform`.

If an image is smaller than the crop, `CenterCrop` centres it on a zero background and returns an array, not an image.

## Embedding images (`embedkit.image_embedding`)

`ImageEmbedding` pairs a preprocessing `Transform` with a `Session`. A
`Session` is an abstract class. Implement its `input_names` property and its
`run(inputs)` method to connect whatever runs your model:

```python
import numpy as np
from embedkit.image_embedding import ImageEmbedding, Session
from embedkit.preprocessing import compose_from_file

class MeanColourSession(Session):
    @property
    def input_names(self):
        return ["pixel_values"]

    def run(self, inputs):
        pixels = inputs["pixel_values"]
        return {"image_embeds": pixels.mean(axis=(2, 3)).astype(np.float32)}

model = ImageEmbedding(compose_from_file("preprocessor_config.json"), MeanColourSession())
vectors = model.embed(["a.png", "b.png"], batch_size=16)
```

The class has three methods:

- `embed(paths, batch_size=None)` embeds image files.
- `embed_bytes(blobs, batch_size=None)` embeds encoded image data.
- `embed_images(images)` embeds PIL images that are already loaded, as a single batch.

The batch size defaults to 256. A batch size below 1 raises `ValueError`.

Errors from reading images:

- An image that cannot be decoded raises `ValueError("image decode: ...")`.
- A path that does not exist raises `FileNotFoundError`.

The pixel array goes to the session under the name of the session's first input.

`extract_embeddings(outputs)` handles the output and can be used on its own:

- If there is exactly one output, it is used whatever its name.
- Otherwise `image_embeds` is tried first, then `last_hidden_state`.
- Only float32 tensors are accepted.
- A 3-D tensor contributes its first token per item. A 2-D tensor contributes its rows.
- Each vector is L2-normalised.

## Options (`embedkit.options`)

- `InitOptions` and `InitOptionsWithLength` are immutable settings objects. Their `with_*` methods return modified copies. The settings are:
  - model name;
  - execution providers;
  - cache directory;
  - download progress;
  - for `InitOptionsWithLength`, the maximum length. If it is not given, the model name's `MAX_LENGTH` is used.
- `ImageInitOptionsUserDefined` and `UserDefinedImageEmbeddingModel` describe a model whose ONNX and preprocessor bytes you supply yourself.
- `user_defined_options(options)` copies the execution providers from an `InitOptions` into an `ImageInitOptionsUserDefined`.

## Common helpers (`embedkit.common`)

- `get_cache_dirs()` and `get_cache_dir()` read `FASTEMBED_CACHE_DIR`. It can hold one path or a colon-separated list, and the default is `.fastembed_cache`.
- `find_model_cache_dir(model_code, dirs)` returns the first directory that holds a complete hub-style snapshot (`models--org--name/refs/main` together with the snapshot it names).
- `load_tokenizer_settings(files, max_length)` parses a `TokenizerFiles` into a `TokenizerSettings`. The result holds:
  - the tokenizer definition;
  - the effective maximum length, capped by `model_max_length`;
  - the pad id and pad token;
  - the `SpecialToken`s.

  It raises `ValueError` for invalid JSON or missing entries.
- `normalize(v)` returns `v` scaled to unit L2 norm.
- `OnnxSource` holds a model as bytes or as a path.
- `SparseEmbedding` is a sparse vector made of parallel index and value lists.

## What embedkit does not do

- It does not download models.
- It has no built-in inference runtime. You supply a `Session`.
- It does not tokenize text. `load_tokenizer_settings` only reads the settings.
- The option classes only record settings. Nothing in the package loads a model from them.