"""
ReflectRPC Invoke Message

A request to call one method on one registered object.

Wire format (UTF-8 XML):

    <InvokeMessage ObjectName="Calc" MethodName="Add" Asynchronous="True" Comment="...">
        <Parameter Type="System.Int32"><![CDATA[2]]></Parameter>
        <Parameter />
    </InvokeMessage>

- Asynchronous is written only when true, Comment only when non-empty
- A None parameter is an empty <Parameter />
- Without <Parameter> children, a Parameters="a,b,[1,2]" attribute is
  accepted as shorthand
"""

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union
from xml.sax.saxutils import escape

from ..coercion import is_array_type
from ..errors import ProtocolError
from .params import split_parameters
from .types import format_value, parse_value, resolve_type, type_name_of


# Object and method names
NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

MESSAGE_TAG = "InvokeMessage"
PARAMETER_TAG = "Parameter"

ATTRIBUTE_ESCAPES = {'"': "&quot;", "\n": "&#10;", "\r": "&#13;", "\t": "&#9;"}


def is_valid_name(name: Any) -> bool:
    """True if name is usable as an object or method name."""
    return isinstance(name, str) and NAME_PATTERN.match(name) is not None


def xml_attribute(name: str, value: Any) -> str:
    return f' {name}="{escape(str(value), ATTRIBUTE_ESCAPES)}"'


def parse_async_flag(value: Optional[str]) -> bool:
    """Strict "true"/"false" (any case); anything else is False."""
    return (value or "").strip().lower() == "true"


def cdata(text: str) -> str:
    """Wrap text in a CDATA section, splitting any "]]>" it contains."""
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def parse_xml(data: Union[str, bytes], tag: str) -> ET.Element:
    """
    Parse a wire document and check its root tag.

    Raises:
        ProtocolError: On malformed XML or an unexpected root
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"{tag} is not valid UTF-8: {e}") from e

    data = data.lstrip("\ufeff").strip()
    if not data:
        raise ProtocolError(f"{tag} is empty")

    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise ProtocolError(f"{tag} format error: {e}") from e

    if root.tag != tag:
        raise ProtocolError(f"Expected <{tag}> but got <{root.tag}>")
    return root


@dataclass(frozen=True)
class InvokeMessage:
    """
    Invoke request.

    Usage:
        message = InvokeMessage("Calc", "Add", [2, 3])
        data = message.to_bytes()
        same = InvokeMessage.parse(data)
    """
    object_name: str
    method_name: str
    parameters: Tuple[Any, ...] = ()
    asynchronous: bool = False
    comment: Optional[str] = None

    def __post_init__(self):
        if not is_valid_name(self.object_name):
            raise ValueError(f"Invalid object name: {self.object_name!r}")
        if not is_valid_name(self.method_name):
            raise ValueError(f"Invalid method name: {self.method_name!r}")
        if self.parameters is None:
            object.__setattr__(self, "parameters", ())
        elif not isinstance(self.parameters, tuple):
            object.__setattr__(self, "parameters", tuple(self.parameters))

    @property
    def object_method(self) -> str:
        """Label "Object.Method" used in results and logs."""
        return f"{self.object_name}.{self.method_name}"

    def to_xml(self) -> str:
        """Encode as an XML string."""
        head = (
            f"<{MESSAGE_TAG}"
            + xml_attribute("ObjectName", self.object_name)
            + xml_attribute("MethodName", self.method_name)
        )
        if self.asynchronous:
            head += xml_attribute("Asynchronous", "True")
        if self.comment:
            head += xml_attribute("Comment", self.comment)

        if not self.parameters:
            return head + " />"

        lines = [head + ">"]
        for value in self.parameters:
            if value is None:
                lines.append(f"\t<{PARAMETER_TAG} />")
            else:
                lines.append(
                    f"\t<{PARAMETER_TAG}{xml_attribute('Type', type_name_of(value))}>"
                    f"{cdata(format_value(value))}</{PARAMETER_TAG}>"
                )
        lines.append(f"</{MESSAGE_TAG}>")
        return "\n".join(lines)

    def to_bytes(self) -> bytes:
        return self.to_xml().encode("utf-8")

    @classmethod
    def parse(cls, data: Union[str, bytes]) -> "InvokeMessage":
        """
        Decode a wire message.

        Typed parameters are converted to their named type; untyped ones
        stay raw strings.

        Raises:
            ProtocolError: If the message is malformed
        """
        root = parse_xml(data, MESSAGE_TAG)

        elements = root.findall(PARAMETER_TAG)
        if elements:
            parameters = [cls._parse_parameter(element) for element in elements]
        else:
            parameters = split_parameters(root.get("Parameters", ""))

        try:
            return cls(
                object_name=root.get("ObjectName", ""),
                method_name=root.get("MethodName", ""),
                parameters=tuple(parameters),
                asynchronous=parse_async_flag(root.get("Asynchronous")),
                comment=root.get("Comment") or None,
            )
        except ValueError as e:
            raise ProtocolError(f"{MESSAGE_TAG} format error: {e}") from e

    @staticmethod
    def _parse_parameter(element: ET.Element) -> Any:
        type_hint = element.get("Type")
        text = element.text or ""
        if not text.strip():
            # Blank is null, except a typed empty array
            if type_hint and is_array_type(resolve_type(type_hint)):
                return []
            return None
        if type_hint is None:
            return text
        return parse_value(text, type_hint)

    @classmethod
    def create(cls, object_name: str, method_name: str, *parameters: Any,
               asynchronous: bool = False, comment: Optional[str] = None) -> "InvokeMessage":
        """Build a message from positional parameters."""
        return cls(object_name, method_name, tuple(parameters), asynchronous, comment)

    def __str__(self) -> str:
        return self.to_xml()
