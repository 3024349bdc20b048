"""Tool invocation values and results.

Tool arguments arrive as arbitrary JSON. They are held in a closed sum type
instead of ``Any`` so that every consumer handles the same six shapes.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"


@dataclass(frozen=True)
class ToolValue:
    """JSON value: string | number | bool | array | object | null."""
    kind: ValueKind
    value: Any = None

    @classmethod
    def null(cls) -> "ToolValue":
        return cls(ValueKind.NULL)

    @classmethod
    def from_json(cls, obj: Any) -> "ToolValue":
        """Convert a decoded JSON value."""
        if obj is None:
            return cls.null()
        # bool before number: bool is an int subclass
        if isinstance(obj, bool):
            return cls(ValueKind.BOOL, obj)
        if isinstance(obj, (int, float)):
            return cls(ValueKind.NUMBER, obj)
        if isinstance(obj, str):
            return cls(ValueKind.STRING, obj)
        if isinstance(obj, (list, tuple)):
            return cls(ValueKind.ARRAY, tuple(cls.from_json(v) for v in obj))
        if isinstance(obj, dict):
            items = []
            for key, val in obj.items():
                if not isinstance(key, str):
                    raise TypeError(f"Object keys must be strings, got {type(key).__name__}")
                items.append((key, cls.from_json(val)))
            return cls(ValueKind.OBJECT, tuple(items))
        raise TypeError(f"Not a JSON value: {type(obj).__name__}")

    @classmethod
    def loads(cls, text: str) -> "ToolValue":
        return cls.from_json(json.loads(text))

    def to_json(self) -> Any:
        """Convert back to plain JSON-compatible Python values."""
        if self.kind == ValueKind.ARRAY:
            return [v.to_json() for v in self.value]
        if self.kind == ValueKind.OBJECT:
            return {k: v.to_json() for k, v in self.value}
        return self.value

    def dumps(self) -> str:
        return json.dumps(self.to_json(), ensure_ascii=False)

    def get(self, key: str) -> Optional["ToolValue"]:
        if self.kind != ValueKind.OBJECT:
            return None
        for k, v in self.value:
            if k == key:
                return v
        return None


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    RESOURCE = "resource"


@dataclass(frozen=True)
class ToolContent:
    """One item of a tool result."""
    type: ContentType
    text: Optional[str] = None
    data: Optional[str] = None  # base64 payload for image/audio
    mime_type: Optional[str] = None
    uri: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolContent":
        content_type = ContentType(data["type"])
        if content_type == ContentType.RESOURCE:
            resource = data.get("resource", {})
            return cls(
                type=content_type,
                text=resource.get("text"),
                data=resource.get("blob"),
                mime_type=resource.get("mimeType"),
                uri=resource.get("uri"),
            )
        return cls(
            type=content_type,
            text=data.get("text"),
            data=data.get("data"),
            mime_type=data.get("mimeType"),
        )

    @property
    def is_textual(self) -> bool:
        return self.text is not None


@dataclass(frozen=True)
class ToolResult:
    """Typed result of a tool call with an explicit success flag."""
    tool_name: str
    content: tuple[ToolContent, ...]
    is_error: bool = False

    @classmethod
    def from_dict(cls, tool_name: str, data: dict[str, Any]) -> "ToolResult":
        return cls(
            tool_name=tool_name,
            content=tuple(ToolContent.from_dict(c) for c in data.get("content", [])),
            is_error=bool(data.get("isError", False)),
        )

    @property
    def text(self) -> str:
        return "\n\n".join(c.text for c in self.content if c.is_textual)
