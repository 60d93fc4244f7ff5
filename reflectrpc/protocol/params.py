"""
ReflectRPC Parameter Shorthand

Parses the compact Parameters="..." attribute form of an InvokeMessage:

    Parameters="2,3"                -> ["2", "3"]
    Parameters="'a, b',[1,2,3],0x1F" -> ["a, b", ["1", "2", "3"], "0x1F"]

Quoted text ('..' or "..") is taken verbatim, [..] becomes a list of
strings, everything else is split on commas and trimmed.
"""

import re
from typing import Any, List


PARAMETER_PATTERN = re.compile(
    r"'([^']*)'"          # single-quoted string
    r'|"([^"]*)"'         # double-quoted string
    r"|\[([^\[\]]*)\]"    # array
    r"|([^,'\"\[\]]+)"    # bare scalar
)


def split_parameters(text: str) -> List[Any]:
    """
    Split a shorthand parameter string.

    Args:
        text: Attribute value

    Returns:
        Parameter values (strings, or lists of strings for arrays)
    """
    if not text or not text.strip():
        return []

    values: List[Any] = []
    for match in PARAMETER_PATTERN.finditer(text):
        single, double, array, scalar = match.groups()
        if single is not None:
            values.append(single)
        elif double is not None:
            values.append(double)
        elif array is not None:
            values.append([item.strip() for item in array.split(",")])
        else:
            scalar = scalar.strip()
            if scalar:
                values.append(scalar)
    return values

