"""
Unit tests for the wire protocol.

Tests cover:
- InvokeMessage encoding and parsing
- Parameters shorthand attribute
- InvokeResult encoding and parsing for every status
- Wire type names
- Malformed documents
"""

from decimal import Decimal
from typing import List

import pytest

from reflectrpc.errors import ProtocolError
from reflectrpc.net.framing import LengthPrefixFraming, RawFraming, get_framing
from reflectrpc.protocol import (
    InvokeMessage,
    InvokeResult,
    InvokeStatusCode,
    format_value,
    register_type,
    resolve_type,
    split_parameters,
    type_name,
    type_name_of,
)

from conftest import Color


class TestInvokeMessage:
    """Tests for InvokeMessage."""

    def test_no_parameters_is_self_closing(self):
        message = InvokeMessage("Calc", "Reset")
        xml = message.to_xml()

        assert xml == '<InvokeMessage ObjectName="Calc" MethodName="Reset" />'
        assert InvokeMessage.parse(xml) == message

    def test_typed_parameters_round_trip(self):
        message = InvokeMessage("Calc", "Add", [2, 3])
        parsed = InvokeMessage.parse(message.to_bytes())

        assert parsed.parameters == (2, 3)
        assert 'Type="System.Int32"' in message.to_xml()

    def test_prefixed_string_stays_string(self):
        """Test that a string parameter is not reinterpreted as a number."""
        parsed = InvokeMessage.parse(InvokeMessage("Calc", "Echo", ["0x1F"]).to_xml())
        assert parsed.parameters == ("0x1F",)

    def test_array_parameter(self):
        message = InvokeMessage("Calc", "Sum", [[1, 2, 3]])
        assert 'Type="System.Int32[]"' in message.to_xml()
        assert InvokeMessage.parse(message.to_xml()).parameters == ([1, 2, 3],)

    def test_empty_array_parameter(self):
        parsed = InvokeMessage.parse(InvokeMessage("Calc", "Sum", [[]]).to_xml())
        assert parsed.parameters == ([],)

    def test_blank_parameters_are_null(self):
        xml = (
            '<InvokeMessage ObjectName="Calc" MethodName="Echo">'
            "<Parameter>   </Parameter>"
            '<Parameter Type="System.String"> </Parameter>'
            '<Parameter Type="System.Int32[]"> </Parameter>'
            "</InvokeMessage>"
        )
        assert InvokeMessage.parse(xml).parameters == (None, None, [])

    @pytest.mark.parametrize("flag,expected", [
        ("True", True),
        (" true ", True),
        ("FALSE", False),
        ("1", False),
        ("T", False),
        ("yes", False),
    ])
    def test_asynchronous_flag_is_strict(self, flag, expected):
        xml = f'<InvokeMessage ObjectName="Calc" MethodName="Add" Asynchronous="{flag}" />'
        assert InvokeMessage.parse(xml).asynchronous is expected

    def test_none_parameter(self):
        message = InvokeMessage("Calc", "Echo", [None, "x"])
        assert "<Parameter />" in message.to_xml()
        assert InvokeMessage.parse(message.to_xml()).parameters == (None, "x")

    def test_mixed_scalars(self):
        message = InvokeMessage.create("Obj", "Set", True, 1.5, Decimal("2.25"))
        parsed = InvokeMessage.parse(message.to_xml())
        assert parsed.parameters == (True, 1.5, Decimal("2.25"))

    def test_special_characters_in_text(self):
        text = 'a <b> & "c" ]]> end'
        parsed = InvokeMessage.parse(InvokeMessage("Obj", "Say", [text]).to_xml())
        assert parsed.parameters == (text,)

    def test_asynchronous_and_comment(self):
        message = InvokeMessage("Player", "Play", asynchronous=True, comment="first & only")
        xml = message.to_xml()

        assert 'Asynchronous="True"' in xml
        parsed = InvokeMessage.parse(xml)
        assert parsed.asynchronous is True
        assert parsed.comment == "first & only"

    def test_synchronous_omits_attribute(self):
        assert "Asynchronous" not in InvokeMessage("Calc", "Add", [1, 2]).to_xml()

    def test_untyped_parameter_is_raw_string(self):
        xml = (
            '<InvokeMessage ObjectName="Calc" MethodName="Add">'
            "<Parameter>2</Parameter><Parameter><![CDATA[3]]></Parameter>"
            "</InvokeMessage>"
        )
        assert InvokeMessage.parse(xml).parameters == ("2", "3")

    def test_unknown_type_is_raw_string(self):
        xml = (
            '<InvokeMessage ObjectName="Calc" MethodName="Paint">'
            '<Parameter Type="Acme.Color">GREEN</Parameter>'
            "</InvokeMessage>"
        )
        assert InvokeMessage.parse(xml).parameters == ("GREEN",)

    def test_byte_order_mark_accepted(self):
        data = "\ufeff" + InvokeMessage("Calc", "Add", [1, 2]).to_xml()
        assert InvokeMessage.parse(data.encode("utf-8")).parameters == (1, 2)

    def test_object_method_label(self):
        assert InvokeMessage("Calc", "Add").object_method == "Calc.Add"

    @pytest.mark.parametrize("object_name,method_name", [
        ("", "Add"),
        ("Calc", ""),
        ("Calc.Sub", "Add"),
        ("1Calc", "Add"),
        ("Calc", "Add Now"),
    ])
    def test_invalid_names(self, object_name, method_name):
        with pytest.raises(ValueError):
            InvokeMessage(object_name, method_name)


class TestParametersShorthand:
    """Tests for the Parameters="..." attribute."""

    def test_split_scalars(self):
        assert split_parameters("2, 3") == ["2", "3"]

    def test_split_quoted_and_arrays(self):
        assert split_parameters("'a, b',[1, 2,3],0x1F") == ["a, b", ["1", "2", "3"], "0x1F"]

    def test_split_double_quoted(self):
        assert split_parameters('"x,y", z') == ["x,y", "z"]

    def test_split_empty(self):
        assert split_parameters("") == []
        assert split_parameters("   ") == []

    def test_attribute_used_without_children(self):
        xml = '<InvokeMessage ObjectName="Calc" MethodName="Add" Parameters="2,3" />'
        assert InvokeMessage.parse(xml).parameters == ("2", "3")

    def test_children_take_precedence(self):
        xml = (
            '<InvokeMessage ObjectName="Calc" MethodName="Add" Parameters="9,9">'
            '<Parameter Type="System.Int32">1</Parameter>'
            "</InvokeMessage>"
        )
        assert InvokeMessage.parse(xml).parameters == (1,)


class TestInvokeResult:
    """Tests for InvokeResult."""

    def test_success_return_round_trip(self):
        result = InvokeResult.success_return("Calc.Add", 5)
        parsed = InvokeResult.parse(result.to_bytes())

        assert parsed.status_code == InvokeStatusCode.SUCCESS_AND_RETURN
        assert parsed.object_method == "Calc.Add"
        assert parsed.return_type == "System.Int32"
        assert parsed.return_value == 5
        assert parsed.return_python_type is int

    def test_success_has_no_return(self):
        xml = InvokeResult.success("Calc.Reset").to_xml()

        assert xml == '<InvokeResult StatusCode="0" ObjectMethod="Calc.Reset" />'
        parsed = InvokeResult.parse(xml)
        assert parsed.succeeded
        assert not parsed.has_return
        assert parsed.return_value is None

    def test_failed_keeps_message(self):
        parsed = InvokeResult.parse(InvokeResult.failed("Calc.Add", "bad <input>").to_xml())

        assert parsed.status_code == InvokeStatusCode.FAILED
        assert parsed.exception_message == "bad <input>"
        assert not parsed.succeeded

    def test_timeout_and_unknown(self):
        timeout = InvokeResult.parse(InvokeResult.timeout("Calc.Slow").to_xml())
        assert timeout.status_code == InvokeStatusCode.TIMEOUT
        assert "timed out" in timeout.exception_message

        unknown = InvokeResult.parse(InvokeResult.unknown("", "lost").to_xml())
        assert unknown.status_code == InvokeStatusCode.UNKNOWN
        assert int(unknown.status_code) == -2147483648

    def test_exception_message_only_for_failures(self):
        result = InvokeResult(InvokeStatusCode.SUCCESS, "Calc.Add", exception_message="ignored")
        assert "ExceptionMessage" not in result.to_xml()

    def test_array_return(self):
        parsed = InvokeResult.parse(InvokeResult.success_return("Calc.Range", [0, 1, 2]).to_xml())
        assert parsed.return_type == "System.Int32[]"
        assert parsed.return_value == [0, 1, 2]

    def test_string_return_verbatim(self):
        parsed = InvokeResult.parse(InvokeResult.success_return("Obj.Get", " 0x10 ").to_xml())
        assert parsed.return_value == " 0x10 "

    def test_missing_status_code(self):
        with pytest.raises(ProtocolError):
            InvokeResult.parse('<InvokeResult ObjectMethod="Calc.Add" />')

    def test_invalid_status_code(self):
        with pytest.raises(ProtocolError):
            InvokeResult.parse('<InvokeResult StatusCode="7" ObjectMethod="Calc.Add" />')


class TestMalformed:
    """Tests for malformed documents."""

    @pytest.mark.parametrize("data", [
        b"",
        b"   ",
        b"not xml",
        b"<InvokeMessage ObjectName=",
        b"\xff\xfe\x00",
    ])
    def test_message_errors(self, data):
        with pytest.raises(ProtocolError):
            InvokeMessage.parse(data)

    def test_wrong_root(self):
        with pytest.raises(ProtocolError, match="Expected <InvokeMessage>"):
            InvokeMessage.parse('<InvokeResult StatusCode="0" />')

    def test_missing_names(self):
        with pytest.raises(ProtocolError, match="format error"):
            InvokeMessage.parse('<InvokeMessage MethodName="Add" />')

    def test_bad_typed_value(self):
        xml = (
            '<InvokeMessage ObjectName="Calc" MethodName="Add">'
            '<Parameter Type="System.Int32">abc</Parameter>'
            "</InvokeMessage>"
        )
        with pytest.raises(ProtocolError):
            InvokeMessage.parse(xml)


class TestTypeNames:
    """Tests for wire type names."""

    def test_scalar_names(self):
        assert type_name(int) == "System.Int32"
        assert type_name(float) == "System.Double"
        assert type_name(bool) == "System.Boolean"
        assert type_name(str) == "System.String"
        assert type_name(Decimal) == "System.Decimal"

    def test_array_names(self):
        assert type_name(List[int]) == "System.Int32[]"
        assert type_name(bytes) == "System.Byte[]"
        assert type_name_of(["a", "b"]) == "System.String[]"
        assert type_name_of([1, "b"]) == "System.Object[]"

    def test_resolve(self):
        assert resolve_type("System.Int64") is int
        assert resolve_type("System.Single") is float
        assert resolve_type("System.Double[]") == List[float]
        assert resolve_type("Nope.Type") is None
        assert resolve_type(None) is None

    def test_format_value(self):
        assert format_value(True) == "True"
        assert format_value(Color.BLUE) == "BLUE"
        assert format_value([1, 2]) == "1,2"
        assert format_value(b"\x01\x02") == "1,2"
        assert format_value(None) == ""

    def test_registered_enum_round_trip(self):
        name = register_type(Color, "Tests.Color")
        message = InvokeMessage("Calc", "Paint", [Color.GREEN])

        assert f'Type="{name}"' in message.to_xml()
        assert InvokeMessage.parse(message.to_xml()).parameters == (Color.GREEN,)


class TestFraming:
    """Tests for message framing."""

    def test_raw_is_passthrough(self):
        framing = RawFraming()
        decoder = framing.decoder()

        assert framing.encode(b"abc") == b"abc"
        assert decoder.feed(b"abc") == [b"abc"]
        assert decoder.feed(b"") == []

    def test_length_prefix_split_and_coalesced(self):
        framing = LengthPrefixFraming()
        decoder = framing.decoder()
        data = framing.encode(b"first") + framing.encode(b"second")

        assert data[:4] == b"\x00\x00\x00\x05"
        assert decoder.feed(data[:7]) == []
        assert decoder.feed(data[7:]) == [b"first", b"second"]

    def test_length_prefix_too_large(self):
        framing = LengthPrefixFraming(max_size=8)
        decoder = framing.decoder()

        with pytest.raises(ProtocolError):
            framing.encode(b"x" * 9)
        with pytest.raises(ProtocolError):
            decoder.feed(b"\x00\x00\x01\x00")

    def test_get_framing(self):
        assert get_framing("RAW").protocol_version == 1
        assert get_framing("length").protocol_version == 2
        with pytest.raises(ValueError):
            get_framing("xml")
