"""Names protoc derives from declared names."""

from __future__ import annotations


def json_name(field_name: str) -> str:
    """Default JSON name: drop underscores, capitalizing the letter after each."""
    result = []
    capitalize_next = False
    for ch in field_name:
        if ch == "_":
            capitalize_next = True
        elif capitalize_next:
            result.append(ch.upper())
            capitalize_next = False
        else:
            result.append(ch)
    return "".join(result)


def map_entry_name(field_name: str) -> str:
    """Name of the synthetic message backing a map field: ``my_map`` -> ``MyMapEntry``."""
    result = []
    capitalize_next = True
    for ch in field_name:
        if ch == "_":
            capitalize_next = True
        elif capitalize_next:
            result.append(ch.upper())
            capitalize_next = False
        else:
            result.append(ch)
    return "".join(result) + "Entry"


def c_escape(data: bytes) -> str:
    """C-style escaping used for bytes default values."""
    out = []
    for b in data:
        ch = chr(b)
        if ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        elif ch in ("\"", "'", "\\"):
            out.append("\\" + ch)
        elif 0x20 <= b < 0x7F:
            out.append(ch)
        else:
            out.append(f"\\{b:03o}")
    return "".join(out)
