# Contains class for analyzing JSON structure
from enum import Enum
from typing import Any, Iterable, List, Optional

from .models import JsonStructureNode, NormalizationStrategy


class JsonType(str, Enum):
    """Tagged variant of a decoded JSON value."""
    OBJECT = "object"
    ARRAY = "array"
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    NULL = "null"


def detect_json_type(value: Any) -> JsonType:
    """
    Detect the JSON type of a decoded value.

    Args:
        value: Value produced by ``json.loads`` (or an equivalent Python structure)

    Returns:
        JsonType: Detected type; unknown Python objects read as strings
    """
    if value is None:
        return JsonType.NULL
    if isinstance(value, bool):
        return JsonType.BOOLEAN
    if isinstance(value, int):
        return JsonType.INTEGER
    if isinstance(value, float):
        return JsonType.FLOAT
    if isinstance(value, dict):
        return JsonType.OBJECT
    if isinstance(value, (list, tuple)):
        return JsonType.ARRAY
    return JsonType.STRING


def is_scalar(value):
    return detect_json_type(value) not in (JsonType.OBJECT, JsonType.ARRAY)


def has_nested_arrays(obj):
    """True when the object contains an array at any depth."""
    for value in obj.values():
        json_type = detect_json_type(value)
        if json_type == JsonType.ARRAY:
            return True
        if json_type == JsonType.OBJECT and has_nested_arrays(value):
            return True
    return False


def join_path(prefix, key):
    return f"{prefix}.{key}" if prefix else str(key)


class JsonStructureAnalyzer:
    """
    Analyzes JSON structure to describe nested objects and arrays.

    The tree lets a caller decide, ahead of normalization, which object paths
    should become separate tables. The source data is never modified.
    """

    def __init__(self, max_sample_keys=5):
        self.max_sample_keys = max_sample_keys

    def analyze(self, data, path="", depth=0) -> List[JsonStructureNode]:
        """
        Describe every object- or array-valued field of ``data``.

        Args:
            data: Decoded JSON (object, array or scalar)
            path: Dotted path prefix of ``data``
            depth: Depth of ``data`` in the document

        Returns:
            list: JsonStructureNode per nested field; empty for scalars
        """
        json_type = detect_json_type(data)

        if json_type == JsonType.ARRAY:
            # A root array is described through the shape of its objects
            shape = self._merge_object_shapes(data)
            if shape is None:
                return []
            return self.analyze(shape, path, depth)

        if json_type != JsonType.OBJECT:
            return []

        nodes = []
        for key, value in data.items():
            node = self._process_field(key, value, path, depth)
            if node is not None:
                nodes.append(node)
        return nodes

    def _process_field(self, key, value, parent_path, depth) -> Optional[JsonStructureNode]:
        """Build the node for one field, or None for scalars."""
        json_type = detect_json_type(value)
        path = join_path(parent_path, key)

        if json_type == JsonType.OBJECT:
            keys = list(value.keys())
            return JsonStructureNode(
                key=key,
                path=path,
                type="object",
                depth=depth,
                field_count=len(keys),
                sample_keys=keys[:self.max_sample_keys],
                has_nested_arrays=has_nested_arrays(value),
                children=self.analyze(value, path, depth + 1),
            )

        if json_type == JsonType.ARRAY:
            node = JsonStructureNode(
                key=key,
                path=path,
                type="array",
                depth=depth,
                item_count=len(value),
            )
            if not value:
                return node

            shape = self._merge_object_shapes(value)
            if shape is None:
                node.item_type = "primitive"
                return node

            # Children of an array of objects share the array's path
            keys = list(shape.keys())
            node.item_type = "object"
            node.field_count = len(keys)
            node.sample_keys = keys[:self.max_sample_keys]
            node.has_nested_arrays = has_nested_arrays(shape)
            node.children = self.analyze(shape, path, depth + 1)
            return node

        return None

    @staticmethod
    def _merge_object_shapes(items):
        """
        Union of the keys of the object elements, first occurrence wins.

        Returns None when the array is empty or does not start with an object.
        """
        if not items or detect_json_type(items[0]) != JsonType.OBJECT:
            return None

        shape = {}
        for item in items:
            if detect_json_type(item) != JsonType.OBJECT:
                continue
            for key, value in item.items():
                if key not in shape:
                    shape[key] = value
        return shape

    @staticmethod
    def table_paths(nodes: Iterable[JsonStructureNode], strategy="partial",
                    custom_paths=None) -> List[str]:
        """
        Predict which paths become tables under a normalization strategy.

        Arrays always become tables; objects depend on the strategy. The root
        table is not included.

        Args:
            nodes: Tree returned by ``analyze``
            strategy: "partial", "full" or "custom"
            custom_paths: Object paths promoted under the custom strategy

        Returns:
            list: Dotted paths in document order
        """
        strategy = NormalizationStrategy(strategy)
        custom_paths = set(custom_paths or ())
        paths = []

        def collect(children):
            for node in children:
                if node.type == "array":
                    paths.append(node.path)
                elif strategy == NormalizationStrategy.FULL:
                    paths.append(node.path)
                elif strategy == NormalizationStrategy.PARTIAL and node.has_nested_arrays:
                    paths.append(node.path)
                elif strategy == NormalizationStrategy.CUSTOM and node.path in custom_paths:
                    paths.append(node.path)
                collect(node.children)

        collect(nodes)
        return paths


def analyze_json_structure(data, path="", depth=0) -> List[JsonStructureNode]:
    """Describe the nested objects and arrays of a decoded JSON document."""
    return JsonStructureAnalyzer().analyze(data, path, depth)


def structure_to_dict(node: JsonStructureNode) -> dict:
    """Plain-dict form of a node, used for JSON output."""
    data = {
        "key": node.key,
        "path": node.path,
        "type": node.type,
        "depth": node.depth,
        "field_count": node.field_count,
        "sample_keys": list(node.sample_keys),
        "has_nested_arrays": node.has_nested_arrays,
    }
    if node.type == "array":
        data["item_type"] = node.item_type
        data["item_count"] = node.item_count
    data["children"] = [structure_to_dict(child) for child in node.children]
    return data
