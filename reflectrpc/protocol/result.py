"""
ReflectRPC Invoke Result

Outcome of one InvokeMessage.

Wire format (UTF-8 XML):

    <InvokeResult StatusCode="1" ObjectMethod="Calc.Add">
        <Return Type="System.Int32"><![CDATA[5]]></Return>
    </InvokeResult>

- StatusCode is written as its integer value
- ExceptionMessage is written only for negative status codes
- <Return> is written only for SUCCESS_AND_RETURN
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional, Union

from ..errors import ProtocolError
from .message import cdata, parse_xml, xml_attribute
from .types import format_value, parse_value, resolve_type, type_name_of


RESULT_TAG = "InvokeResult"
RETURN_TAG = "Return"


class InvokeStatusCode(IntEnum):
    """Invoke status. Negative values are failures."""
    UNKNOWN = -2147483648      # No outcome known
    TIMEOUT = -2               # No response before the read timeout
    FAILED = -1                # Resolution, conversion or invocation failed
    SUCCESS = 0                # Invoked, nothing returned
    SUCCESS_AND_RETURN = 1     # Invoked, return value attached


@dataclass(frozen=True)
class InvokeResult:
    """
    Invoke outcome.

    return_type/return_value are only meaningful for SUCCESS_AND_RETURN;
    exception_message only when status_code < SUCCESS.
    """
    status_code: InvokeStatusCode = InvokeStatusCode.UNKNOWN
    object_method: str = ""
    return_type: Optional[str] = None
    return_value: Any = None
    exception_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status_code >= InvokeStatusCode.SUCCESS

    @property
    def has_return(self) -> bool:
        return self.status_code == InvokeStatusCode.SUCCESS_AND_RETURN

    @property
    def return_python_type(self) -> Optional[Any]:
        """Python type named by return_type, if known."""
        return resolve_type(self.return_type)

    @classmethod
    def success(cls, object_method: str) -> "InvokeResult":
        return cls(InvokeStatusCode.SUCCESS, object_method)

    @classmethod
    def success_return(cls, object_method: str, value: Any,
                       return_type: Optional[str] = None) -> "InvokeResult":
        return cls(
            InvokeStatusCode.SUCCESS_AND_RETURN,
            object_method,
            return_type=return_type or type_name_of(value),
            return_value=value,
        )

    @classmethod
    def failed(cls, object_method: str, message: str) -> "InvokeResult":
        return cls(InvokeStatusCode.FAILED, object_method, exception_message=message)

    @classmethod
    def timeout(cls, object_method: str, message: str = "") -> "InvokeResult":
        return cls(
            InvokeStatusCode.TIMEOUT,
            object_method,
            exception_message=message or f"Invoke '{object_method}' timed out",
        )

    @classmethod
    def unknown(cls, object_method: str, message: str) -> "InvokeResult":
        return cls(InvokeStatusCode.UNKNOWN, object_method, exception_message=message)

    def to_xml(self) -> str:
        """Encode as an XML string."""
        head = (
            f"<{RESULT_TAG}"
            + xml_attribute("StatusCode", int(self.status_code))
            + xml_attribute("ObjectMethod", self.object_method)
        )
        if self.status_code < InvokeStatusCode.SUCCESS and self.exception_message:
            head += xml_attribute("ExceptionMessage", self.exception_message)

        if not self.has_return:
            return head + " />"

        return_type = self.return_type or type_name_of(self.return_value)
        return (
            f"{head}>\n"
            f"\t<{RETURN_TAG}{xml_attribute('Type', return_type)}>"
            f"{cdata(format_value(self.return_value))}</{RETURN_TAG}>\n"
            f"</{RESULT_TAG}>"
        )

    def to_bytes(self) -> bytes:
        return self.to_xml().encode("utf-8")

    @classmethod
    def parse(cls, data: Union[str, bytes]) -> "InvokeResult":
        """
        Decode a wire result.

        Raises:
            ProtocolError: If the result is malformed or has no StatusCode
        """
        root = parse_xml(data, RESULT_TAG)

        raw_status = root.get("StatusCode")
        if raw_status is None:
            raise ProtocolError(f"{RESULT_TAG} has no StatusCode")
        try:
            status = InvokeStatusCode(int(raw_status))
        except ValueError:
            raise ProtocolError(f"Invalid StatusCode: {raw_status}") from None

        return_type = None
        return_value = None
        if status == InvokeStatusCode.SUCCESS_AND_RETURN:
            element = root.find(RETURN_TAG)
            if element is not None:
                return_type = element.get("Type")
                return_value = parse_value(element.text or "", return_type)

        exception_message = None
        if status < InvokeStatusCode.SUCCESS:
            exception_message = root.get("ExceptionMessage")

        return cls(
            status_code=status,
            object_method=root.get("ObjectMethod", ""),
            return_type=return_type,
            return_value=return_value,
            exception_message=exception_message,
        )

    def __str__(self) -> str:
        if self.has_return:
            return f"{self.object_method}: {self.status_code.name} {self.return_value!r}"
        if self.exception_message:
            return f"{self.object_method}: {self.status_code.name} {self.exception_message}"
        return f"{self.object_method}: {self.status_code.name}"
