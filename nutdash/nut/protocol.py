"""
Encoding and decoding for the NUT line protocol.

Everything in this module is pure: commands are built as strings and
responses are decoded from already-read lines, so the parsing can be
tested against literal server output without a live upsd.

Reference: https://networkupstools.org/docs/developer-guide.chunked/net-protocol.html
"""

from typing import Dict, List, Optional, Sequence

from .errors import (
    TRANSIENT_BUSY_TOKEN,
    NUTProtocolError,
    NUTServerError,
    NUTTransientBusyError,
)

RawVariableSet = Dict[str, str]

ENCODING = "utf-8"


def quote(value: str) -> str:
    """Quote a command argument if the server would otherwise split it."""
    if value and not any(c.isspace() or c in '"\\' for c in value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def split_line(line: str) -> List[str]:
    """
    Split one response line into tokens.

    Double-quoted tokens may contain spaces; inside them ``\\"`` and ``\\\\``
    are unescaped.

    Raises:
        NUTProtocolError: If a quoted token is never closed.
    """
    tokens: List[str] = []
    current: List[str] = []
    in_quotes = False
    quoted_token = False
    escape = False

    for ch in line:
        if escape:
            current.append(ch)
            escape = False
        elif ch == "\\":
            escape = True
        elif ch == '"':
            in_quotes = not in_quotes
            quoted_token = True
        elif ch.isspace() and not in_quotes:
            if current or quoted_token:
                tokens.append("".join(current))
                current = []
                quoted_token = False
        else:
            current.append(ch)

    if in_quotes or escape:
        raise NUTProtocolError(f"Unterminated quoted value in line: {line!r}")
    if current or quoted_token:
        tokens.append("".join(current))
    return tokens


def frame(command: str) -> bytes:
    """Terminate a command with a newline and encode it for the wire."""
    return f"{command}\n".encode(ENCODING)


def encode_list_ups() -> str:
    return "LIST UPS"


def encode_list_vars(device_name: str) -> str:
    if not device_name:
        raise ValueError("device_name must not be empty")
    return f"LIST VAR {quote(device_name)}"


def encode_get_var(device_name: str, variable: str) -> str:
    return f"GET VAR {quote(device_name)} {quote(variable)}"


def encode_username(username: str) -> str:
    return f"USERNAME {quote(username)}"


def encode_password(password: str) -> str:
    return f"PASSWORD {quote(password)}"


def encode_logout() -> str:
    return "LOGOUT"


def is_error(line: str) -> bool:
    return line.startswith("ERR")


def is_list_end(line: str) -> bool:
    return line.startswith("END LIST")


def parse_error(line: str) -> NUTServerError:
    """
    Build the exception for an ``ERR`` line.

    A line carrying the "communication still running" token becomes a
    NUTTransientBusyError, everything else a plain NUTServerError.
    """
    body = line[3:].strip() if line.startswith("ERR") else line.strip()
    code, _, detail = body.partition(" ")
    if TRANSIENT_BUSY_TOKEN in line:
        return NUTTransientBusyError(code or "BUSY", detail)
    return NUTServerError(code or "UNKNOWN", detail)


def check_ok(line: str) -> None:
    """
    Validate a single-line reply such as the one after USERNAME or PASSWORD.

    Raises:
        NUTServerError: If the server answered with an ERR line.
        NUTProtocolError: If the reply is neither OK nor ERR.
    """
    if is_error(line):
        raise parse_error(line)
    if not line.startswith("OK"):
        raise NUTProtocolError(f"Expected OK, got: {line!r}")


def _list_body(lines: Sequence[str], header: str) -> List[List[str]]:
    """Check the BEGIN/END frame of a list reply and tokenize its body."""
    lines = [line.rstrip("\r\n") for line in lines]
    for line in lines:
        if is_error(line):
            raise parse_error(line)
    if not lines or lines[0].strip() != f"BEGIN {header}":
        raise NUTProtocolError(f"Missing 'BEGIN {header}' in response")
    if len(lines) < 2 or lines[-1].strip() != f"END {header}":
        raise NUTProtocolError(f"Missing 'END {header}' terminator in response")
    return [split_line(line) for line in lines[1:-1] if line.strip()]


def decode_device_descriptions(lines: Sequence[str]) -> Dict[str, str]:
    """
    Decode a ``LIST UPS`` reply into ``{device name: description}``.

    The mapping keeps the order in which the server listed the devices.
    """
    devices: Dict[str, str] = {}
    for tokens in _list_body(lines, "LIST UPS"):
        if len(tokens) not in (2, 3) or tokens[0] != "UPS" or not tokens[1]:
            raise NUTProtocolError(f"Malformed UPS line: {' '.join(tokens)!r}")
        devices[tokens[1]] = tokens[2] if len(tokens) == 3 else ""
    return devices


def decode_device_list(lines: Sequence[str]) -> List[str]:
    """Decode a ``LIST UPS`` reply into the device names, in server order."""
    return list(decode_device_descriptions(lines))


def decode_variable_list(lines: Sequence[str], device_name: Optional[str] = None) -> RawVariableSet:
    """
    Decode a ``LIST VAR <device>`` reply.

    Args:
        lines: The reply, including the BEGIN and END lines.
        device_name: When given, the frame and every VAR line must name it.

    Returns:
        A mapping of variable name to unescaped value.

    Raises:
        NUTServerError: If the reply contains an ERR line.
        NUTProtocolError: On a missing frame line or a malformed VAR line.
    """
    header = f"LIST VAR {device_name}" if device_name else None
    if header is None:
        first = lines[0].strip() if lines else ""
        header = first[len("BEGIN "):] if first.startswith("BEGIN LIST VAR ") else "LIST VAR"

    variables: RawVariableSet = {}
    for tokens in _list_body(lines, header):
        if len(tokens) != 4 or tokens[0] != "VAR" or not tokens[2]:
            raise NUTProtocolError(f"Malformed VAR line: {' '.join(tokens)!r}")
        if device_name and tokens[1] != device_name:
            raise NUTProtocolError(
                f"VAR line for '{tokens[1]}' in listing of '{device_name}'"
            )
        variables[tokens[2]] = tokens[3]
    return variables


def decode_single_var(line: str) -> str:
    """Decode a ``VAR <device> <name> "<value>"`` reply to ``GET VAR``."""
    if is_error(line):
        raise parse_error(line)
    tokens = split_line(line)
    if len(tokens) != 4 or tokens[0] != "VAR":
        raise NUTProtocolError(f"Malformed VAR line: {line!r}")
    return tokens[3]
