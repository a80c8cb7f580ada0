"""Pluggable codecs used for request payloads and response bodies."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Any, Mapping, Protocol, runtime_checkable

from pydantic import TypeAdapter

from .exceptions import FluentRestSerializationError

_XML_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")
_XML_ILLEGAL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


@runtime_checkable
class SerializationAdapter(Protocol):
    """Contract every codec satisfies.

    ``serialize(None, ...)`` must return ``""`` and ``deserialize("", ...)`` must
    return ``None``; the codec's ``media_type`` is sent as the request content type.
    """

    media_type: str

    def serialize(self, value: Any, declared_type: Any = None) -> str: ...

    def deserialize(self, text: str, declared_type: Any = None) -> Any: ...


def _adapter_for(value: Any, declared_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(declared_type if declared_type is not None else type(value))


class JsonSerializer:
    media_type = "application/json"

    def serialize(self, value: Any, declared_type: Any = None) -> str:
        if value is None:
            return ""
        try:
            return _adapter_for(value, declared_type).dump_json(value).decode("utf-8")
        except (TypeError, ValueError) as exc:
            raise FluentRestSerializationError("Unable to serialize payload as JSON", cause=exc) from exc

    def deserialize(self, text: str, declared_type: Any = None) -> Any:
        if not text:
            return None
        try:
            return TypeAdapter(declared_type if declared_type is not None else Any).validate_json(text)
        except (TypeError, ValueError) as exc:
            raise FluentRestSerializationError("Unable to deserialize JSON content", cause=exc) from exc

    def __repr__(self) -> str:
        return "JsonSerializer()"


class XmlSerializer:
    """XML codec built on ElementTree.

    Objects are dumped to plain data first, then written as nested elements:
    mapping keys become child tags (keys that are not valid XML names are
    written as ``<entry key="...">``), sequences are flagged with
    ``type="array"`` and hold ``<item>`` children, and ``None`` is written as
    ``nil="true"``. Typed decoding runs the parsed tree through pydantic's lax
    validation so numeric and boolean text is coerced back.
    """

    media_type = "application/xml"

    def serialize(self, value: Any, declared_type: Any = None) -> str:
        if value is None:
            return ""
        try:
            data = _adapter_for(value, declared_type).dump_python(value, mode="json")
        except (TypeError, ValueError) as exc:
            raise FluentRestSerializationError("Unable to serialize payload as XML", cause=exc) from exc
        root = ET.Element(_root_tag(declared_type if declared_type is not None else type(value)))
        _fill_element(root, data)
        return ET.tostring(root, encoding="unicode")

    def deserialize(self, text: str, declared_type: Any = None) -> Any:
        if not text:
            return None
        try:
            data = _read_element(ET.fromstring(text))
        except ET.ParseError as exc:
            raise FluentRestSerializationError("Unable to parse XML content", cause=exc) from exc
        if declared_type is None:
            return data
        try:
            return TypeAdapter(declared_type).validate_python(data)
        except (TypeError, ValueError) as exc:
            raise FluentRestSerializationError("Unable to deserialize XML content", cause=exc) from exc

    def __repr__(self) -> str:
        return "XmlSerializer()"


def _root_tag(declared_type: Any) -> str:
    name = getattr(declared_type, "__name__", None)
    if isinstance(name, str) and _XML_NAME.match(name):
        return name
    return "root"


def _xml_text(text: str) -> str:
    match = _XML_ILLEGAL.search(text)
    if match:
        raise FluentRestSerializationError(
            f"Character U+{ord(match.group()):04X} cannot be represented in XML"
        )
    return text


def _fill_element(element: ET.Element, value: Any) -> None:
    if value is None:
        element.set("nil", "true")
    elif isinstance(value, Mapping):
        if not value:
            element.set("type", "object")
        for key, item in value.items():
            key = str(key)
            if _XML_NAME.match(key) and key not in {"item", "entry"}:
                child = ET.SubElement(element, key)
            else:
                child = ET.SubElement(element, "entry", key=_xml_text(key))
            _fill_element(child, item)
    elif isinstance(value, (list, tuple)):
        element.set("type", "array")
        for item in value:
            _fill_element(ET.SubElement(element, "item"), item)
    elif isinstance(value, bool):
        element.text = "true" if value else "false"
    else:
        element.text = _xml_text(str(value))


def _read_element(element: ET.Element) -> Any:
    if element.get("nil") == "true":
        return None
    kind = element.get("type")
    if kind == "array":
        return [_read_element(child) for child in element]
    children = list(element)
    if not children:
        if kind == "object":
            return {}
        return element.text or ""

    data: dict[str, Any] = {}
    collapsed: set[str] = set()
    for child in children:
        key = child.get("key", child.tag) if child.tag == "entry" else child.tag
        value = _read_element(child)
        if key in collapsed:
            data[key].append(value)
        elif key in data:
            # repeated tags without an array marker collapse into a list
            data[key] = [data[key], value]
            collapsed.add(key)
        else:
            data[key] = value
    return data


JSON = JsonSerializer()
XML = XmlSerializer()
