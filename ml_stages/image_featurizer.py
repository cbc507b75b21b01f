"""Image featurization with a truncated pretrained network.

A ``ModelSchema`` describes a stored ``torch`` network by name, location and
its ordered top-level layers. ``ImageFeaturizer`` drops the requested number
of trailing layers and emits the activations of the last remaining layer as
one flat embedding vector per image.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import torch
import torch.nn.functional as F
from sklearn.base import BaseEstimator, TransformerMixin
from torch import nn

logger = logging.getLogger(__name__)

_SCHEMA_SUFFIX = '.meta.json'
_MODEL_SUFFIX = '.model'


@dataclass(frozen=True)
class ModelSchema:
    """Name, location and layer graph of a stored network."""
    name: str
    uri: str
    layer_names: Tuple[str, ...] = field(default_factory=tuple)
    input_size: Optional[Tuple[int, int]] = None
    model_type: str = 'image'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ModelSchema':
        input_size = data.get('input_size')
        return cls(
            name=data['name'],
            uri=data['uri'],
            layer_names=tuple(data.get('layer_names', ())),
            input_size=tuple(input_size) if input_size else None,
            model_type=data.get('model_type', 'image'),
        )


def layer_names_of(network: nn.Module) -> Tuple[str, ...]:
    """Ordered names of the top-level layers of ``network``."""
    return tuple(name for name, _ in network.named_children())


@lru_cache(maxsize=8)
def load_network(uri: str) -> nn.Module:
    """Load a network saved with ``torch.save``."""
    network = torch.load(uri, map_location='cpu', weights_only=False)
    network.eval()
    return network


def schema_from_file(path: str,
                     name: Optional[str] = None,
                     input_size: Optional[Tuple[int, int]] = None) -> ModelSchema:
    """Describe a network stored at an explicit file location."""
    network = load_network(path)
    return ModelSchema(
        name=name or os.path.splitext(os.path.basename(path))[0],
        uri=path,
        layer_names=layer_names_of(network),
        input_size=input_size,
    )


class ModelDownloader:
    """Resolves pretrained networks by name into a local model directory.

    Networks come from ``timm``'s pretrained model hub and are stored next to
    a ``<name>.meta.json`` schema, so a second request is served locally.
    """

    def __init__(self, local_path: str):
        self.local_path = local_path
        os.makedirs(self.local_path, exist_ok=True)

    def _schema_path(self, name: str) -> str:
        return os.path.join(self.local_path, name + _SCHEMA_SUFFIX)

    def local_models(self) -> List[ModelSchema]:
        schemas = []
        for filename in sorted(os.listdir(self.local_path)):
            if filename.endswith(_SCHEMA_SUFFIX):
                with open(os.path.join(self.local_path, filename)) as f:
                    schemas.append(ModelSchema.from_dict(json.load(f)))
        return schemas

    def download_by_name(self, name: str) -> ModelSchema:
        schema_path = self._schema_path(name)
        if os.path.exists(schema_path):
            with open(schema_path) as f:
                schema = ModelSchema.from_dict(json.load(f))
            if os.path.exists(schema.uri):
                logger.debug("Using local copy of %s at %s", name, schema.uri)
                return schema

        import timm

        logger.info("Downloading pretrained model %s", name)
        network = timm.create_model(name, pretrained=True)
        network.eval()
        model_path = os.path.join(self.local_path, name + _MODEL_SUFFIX)
        torch.save(network, model_path)

        input_size = None
        pretrained_cfg = getattr(network, 'pretrained_cfg', None) or {}
        if pretrained_cfg.get('input_size'):
            input_size = tuple(pretrained_cfg['input_size'][-2:])

        schema = ModelSchema(
            name=name,
            uri=model_path,
            layer_names=layer_names_of(network),
            input_size=input_size,
        )
        with open(schema_path, 'w') as f:
            json.dump(schema.to_dict(), f, indent=2)
        return schema


def truncate_network(network: nn.Module,
                     schema: ModelSchema,
                     cut_output_layers: int,
                     layer_names: Optional[Sequence[str]] = None) -> nn.Module:
    """Keep the layer graph up to the requested output layer.

    With ``layer_names`` the graph ends at the first requested layer;
    otherwise ``cut_output_layers`` trailing layers are dropped. A cut of 0
    keeps the network whole.
    """
    graph = list(schema.layer_names) or list(layer_names_of(network))
    if layer_names:
        if layer_names[0] not in graph:
            raise ValueError(f"Layer '{layer_names[0]}' not found in {schema.name}: {graph}")
        keep = graph.index(layer_names[0]) + 1
    else:
        if cut_output_layers < 0:
            raise ValueError("cut_output_layers must be non-negative")
        if cut_output_layers == 0:
            return network
        keep = len(graph) - cut_output_layers
        if keep <= 0:
            raise ValueError(
                f"Cannot cut {cut_output_layers} layers from {schema.name}, which has {len(graph)}"
            )

    children = dict(network.named_children())
    return nn.Sequential(*[children[name] for name in graph[:keep]])


def image_to_tensor(image: Any, input_size: Optional[Tuple[int, int]] = None) -> torch.Tensor:
    """Convert an HxW or HxWxC image to a CHW float tensor in [0, 1]."""
    array = np.asarray(image, dtype=np.float32)
    if array.ndim == 2:
        array = array[:, :, np.newaxis]
    if array.ndim != 3:
        raise ValueError(f"Expected an HxW or HxWxC image, got shape {array.shape}")
    if array.max(initial=0.0) > 1.0:
        array = array / 255.0
    tensor = torch.from_numpy(np.ascontiguousarray(array.transpose(2, 0, 1)))
    if input_size is not None and tuple(tensor.shape[-2:]) != tuple(input_size):
        tensor = F.interpolate(tensor.unsqueeze(0), size=tuple(input_size),
                               mode='bilinear', align_corners=False).squeeze(0)
    return tensor


def _is_absent(image: Any) -> bool:
    return image is None or (isinstance(image, float) and np.isnan(image))


class ImageFeaturizer(BaseEstimator, TransformerMixin):
    """Embeds images with a pretrained network cut at a chosen layer.

    Args:
        input_col: column holding images (arrays or PIL images)
        output_col: column receiving the embedding vectors
        model: ``ModelSchema`` of the network to run
        cut_output_layers: number of trailing layers to drop; 0 keeps the
            published output
        layer_names: optional explicit readout layer
        minibatch_size: number of images evaluated per forward pass
    """

    def __init__(self,
                 input_col: str = 'image',
                 output_col: str = 'features',
                 model: Optional[ModelSchema] = None,
                 cut_output_layers: int = 1,
                 layer_names: Optional[List[str]] = None,
                 minibatch_size: int = 10):
        self.input_col = input_col
        self.output_col = output_col
        self.model = model
        self.cut_output_layers = cut_output_layers
        self.layer_names = layer_names
        self.minibatch_size = minibatch_size

    def set_model(self, schema: ModelSchema) -> 'ImageFeaturizer':
        self.model = schema
        return self

    def set_model_location(self, path: str) -> 'ImageFeaturizer':
        self.model = schema_from_file(path)
        return self

    def __sklearn_is_fitted__(self) -> bool:
        return True

    def fit(self, df: pd.DataFrame, y: Any = None) -> 'ImageFeaturizer':
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.model is None:
            raise ValueError("A model must be set before transforming")
        if self.input_col not in df.columns:
            raise ValueError(f"Input column '{self.input_col}' not found in dataset")

        network = truncate_network(load_network(self.model.uri), self.model,
                                   self.cut_output_layers, self.layer_names)
        network.eval()

        images = df[self.input_col]
        present = [position for position, image in enumerate(images) if not _is_absent(image)]
        embeddings: List[Optional[np.ndarray]] = [None] * len(images)

        logger.info("Featurizing %d images with %s (cut=%d)",
                    len(present), self.model.name, self.cut_output_layers)
        with torch.no_grad():
            for start in range(0, len(present), self.minibatch_size):
                positions = present[start:start + self.minibatch_size]
                batch = torch.stack([image_to_tensor(images.iloc[p], self.model.input_size)
                                     for p in positions])
                output = torch.flatten(network(batch), start_dim=1).cpu().numpy()
                for position, vector in zip(positions, output):
                    embeddings[position] = vector.astype(float)

        out = df.copy()
        out[self.output_col] = pd.Series(embeddings, index=df.index, dtype=object)
        return out
