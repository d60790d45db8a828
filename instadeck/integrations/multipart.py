"""Minimal ``multipart/mixed`` reader for Readeck batch responses."""

from __future__ import annotations

import re
from email.message import Message
from email.utils import collapse_rfc2231_value
from typing import Dict, Iterator, Tuple


class MultipartError(ValueError):
    """Raised when a multipart body cannot be framed."""


def parse_content_type(value: str) -> Tuple[str, Dict[str, str]]:
    """Split a Content-Type header into ``(media_type, params)``."""

    msg = Message()
    msg["content-type"] = value or ""
    params: Dict[str, str] = {}
    for key, param in msg.get_params(failobj=[])[1:]:
        params[key.lower()] = collapse_rfc2231_value(param)
    return msg.get_content_type(), params


def _delimiter_pattern(boundary: str) -> "re.Pattern[bytes]":
    # A delimiter sits at the start of the body or after a line break; a
    # trailing "--" marks the close delimiter.
    return re.compile(
        rb"(?:\A|\r?\n)--" + re.escape(boundary.encode("latin-1")) + rb"(--)?[ \t]*(?:\r?\n|\Z)"
    )


def _split_headers(part: bytes) -> Tuple[Dict[str, str], bytes]:
    if part.startswith(b"\r\n"):
        return {}, part[2:]
    if part.startswith(b"\n"):
        return {}, part[1:]
    match = re.search(rb"\r?\n\r?\n", part)
    if match is None:
        head, payload = part, b""
    else:
        head, payload = part[: match.start()], part[match.end():]
    headers: Dict[str, str] = {}
    for line in re.split(rb"\r?\n", head):
        if not line.strip():
            continue
        name, sep, value = line.partition(b":")
        if not sep:
            continue
        headers[name.decode("latin-1").strip().lower()] = value.decode("latin-1").strip()
    return headers, payload


def iter_parts(body: bytes, boundary: str) -> Iterator[Tuple[Dict[str, str], bytes]]:
    """Yield ``(headers, payload)`` for each part of a multipart body.

    Header names are lower-cased. The preamble and epilogue are ignored. A
    body without a closing delimiter ends after its last complete part.
    """

    if not boundary:
        raise MultipartError("missing multipart boundary")
    delimiters = list(_delimiter_pattern(boundary).finditer(body))
    if not delimiters:
        raise MultipartError("multipart body does not contain its boundary")
    for current, following in zip(delimiters, delimiters[1:]):
        if current.group(1):
            return
        yield _split_headers(body[current.end(): following.start()])
