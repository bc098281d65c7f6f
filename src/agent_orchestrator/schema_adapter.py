"""
Schema adapter for the agent orchestrator.

Translates the pydantic model describing a tool's parameters into the
JSON-schema function-calling dialect that Ollama and Bedrock expect.
Unrecognized annotations degrade to a string schema so a single odd field
never blocks a tool from being offered to the model.
"""

import collections.abc
import enum
import types
import typing
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel

_NONE_TYPE = type(None)

_PRIMITIVES = {
    str: "string",
    bool: "boolean",
    int: "integer",
    float: "number",
}

_ARRAY_ORIGINS = (list, set, frozenset, tuple)


def to_backend_schema(parameters: Optional[Type[BaseModel]]) -> Dict[str, Any]:
    """Convert a parameter model into an object schema."""
    if not _is_model(parameters):
        return {"type": "object", "properties": {}, "required": []}
    return _object_schema(parameters)


def to_function_tool(tool: Any) -> Dict[str, Any]:
    """Wrap a tool descriptor as a function-calling tool definition."""
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description or "",
            "parameters": to_backend_schema(tool.parameters),
        },
    }


def _object_schema(model: Type[BaseModel]) -> Dict[str, Any]:
    properties: Dict[str, Any] = {}
    required: List[str] = []

    for field_name, field in model.model_fields.items():
        key = field.alias or field_name
        schema = _annotation_schema(field.annotation)
        if field.description:
            schema = {**schema, "description": field.description}
        properties[key] = schema

        if field.is_required() and not _is_optional(field.annotation):
            required.append(key)

    return {"type": "object", "properties": properties, "required": required}


def _annotation_schema(annotation: Any) -> Dict[str, Any]:
    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)

    if origin is typing.Annotated:
        return _annotation_schema(args[0])

    if _is_union(origin):
        members = [arg for arg in args if arg is not _NONE_TYPE]
        if len(members) == 1:
            return _annotation_schema(members[0])
        return {"type": "string"}

    if annotation in _PRIMITIVES:
        return {"type": _PRIMITIVES[annotation]}

    if isinstance(annotation, type) and issubclass(annotation, enum.Enum):
        return {"type": "string", "enum": [member.value for member in annotation]}

    if origin is typing.Literal:
        return {"type": "string", "enum": list(args)}

    if annotation in _ARRAY_ORIGINS or origin in _ARRAY_ORIGINS or _is_abc(origin, "Sequence"):
        item = args[0] if args else None
        return {"type": "array", "items": _annotation_schema(item) if item is not None else {"type": "string"}}

    if _is_model(annotation):
        return _object_schema(annotation)

    if annotation is dict or origin is dict or _is_abc(origin, "Mapping"):
        return {"type": "object", "additionalProperties": True}

    return {"type": "string"}


def _is_model(candidate: Any) -> bool:
    return isinstance(candidate, type) and issubclass(candidate, BaseModel)


def _is_union(origin: Any) -> bool:
    if origin is typing.Union:
        return True
    return origin is not None and origin is getattr(types, "UnionType", None)


def _is_optional(annotation: Any) -> bool:
    origin = typing.get_origin(annotation)
    if origin is typing.Annotated:
        return _is_optional(typing.get_args(annotation)[0])
    return _is_union(origin) and _NONE_TYPE in typing.get_args(annotation)


def _is_abc(origin: Any, name: str) -> bool:
    abc_type = getattr(collections.abc, name)
    return isinstance(origin, type) and issubclass(origin, abc_type) and origin not in (str, bytes)
