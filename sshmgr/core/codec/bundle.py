"""
Credential bundle token format.

Version 1 layout (all integers big-endian):

    u8   version (=1)
    u16  len | server_address (utf-8)
    u16  len | location (utf-8)
    u16  len | username (utf-8)
    u16  len | secret (utf-8)
    u16  port count, then count x u16 port
    u16  year | u8 month | u8 day        (expiry date)

The packed bytes are zlib-compressed (DEFLATE + adler32) and written as
URL-safe base64 without padding. Decoding rejects anything it would not have
produced itself.
"""
from __future__ import annotations

import base64
import binascii
import datetime as _dt
import re
import struct
import zlib
from dataclasses import dataclass, field
from typing import List, Tuple

from sshmgr.core.errors import CodecError

FORMAT_VERSION = 1

_U8 = struct.Struct(">B")
_U16 = struct.Struct(">H")
_DATE = struct.Struct(">HBB")
_MAX_FIELD = 0xFFFF
_B64_RE = re.compile(r"^[A-Za-z0-9_-]*$")


@dataclass(frozen=True)
class CredentialBundle:
    """Connection secrets for one end user. Build, encode, drop; never persist."""

    server_address: str
    ports: Tuple[int, ...]
    location: str
    username: str
    secret: str = field(repr=False)
    expiry_date: _dt.date

    def __post_init__(self) -> None:
        ports = tuple(int(p) for p in self.ports)
        object.__setattr__(self, "ports", ports)
        if not ports:
            raise ValueError("bundle needs at least one port")
        if any(p <= 0 or p > 0xFFFF for p in ports):
            raise ValueError("ports must be in 1..65535")
        if len(set(ports)) != len(ports):
            raise ValueError("ports must not repeat")
        if isinstance(self.expiry_date, _dt.datetime) or not isinstance(self.expiry_date, _dt.date):
            raise ValueError("expiry_date must be a calendar date")


# ---------- stage 1: serialize ----------
def _pack_str(value: str) -> bytes:
    raw = value.encode("utf-8")
    if len(raw) > _MAX_FIELD:
        raise ValueError("field longer than 65535 bytes")
    return _U16.pack(len(raw)) + raw


def serialize(bundle: CredentialBundle) -> bytes:
    parts: List[bytes] = [_U8.pack(FORMAT_VERSION)]
    for value in (bundle.server_address, bundle.location, bundle.username, bundle.secret):
        parts.append(_pack_str(value))
    parts.append(_U16.pack(len(bundle.ports)))
    parts.extend(_U16.pack(p) for p in bundle.ports)
    d = bundle.expiry_date
    parts.append(_DATE.pack(d.year, d.month, d.day))
    return b"".join(parts)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, n: int, what: str) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise CodecError("Credential token is truncated.", field=what)
        out = self.data[self.pos:end]
        self.pos = end
        return out

    def u8(self, what: str) -> int:
        return _U8.unpack(self.take(_U8.size, what))[0]

    def u16(self, what: str) -> int:
        return _U16.unpack(self.take(_U16.size, what))[0]

    def text(self, what: str) -> str:
        raw = self.take(self.u16(what), what)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CodecError("Credential token has invalid text.", field=what) from e


def deserialize(data: bytes) -> CredentialBundle:
    r = _Reader(data)
    version = r.u8("version")
    if version != FORMAT_VERSION:
        raise CodecError("Unsupported credential token version.", version=version)
    server_address = r.text("server_address")
    location = r.text("location")
    username = r.text("username")
    secret = r.text("secret")
    ports = tuple(r.u16("ports") for _ in range(r.u16("port_count")))
    year, month, day = _DATE.unpack(r.take(_DATE.size, "expiry_date"))
    if r.pos != len(data):
        raise CodecError("Credential token has trailing data.", extra=len(data) - r.pos)
    try:
        expiry = _dt.date(year, month, day)
        return CredentialBundle(
            server_address=server_address,
            ports=ports,
            location=location,
            username=username,
            secret=secret,
            expiry_date=expiry,
        )
    except ValueError as e:
        raise CodecError("Credential token has invalid values.") from e


# ---------- stage 2: compress ----------
def compress(data: bytes) -> bytes:
    return zlib.compress(data, 9)


def decompress(data: bytes) -> bytes:
    d = zlib.decompressobj()
    try:
        out = d.decompress(data)
        out += d.flush()
    except zlib.error as e:
        raise CodecError("Credential token is corrupted.") from e
    if not d.eof:
        raise CodecError("Credential token is truncated.")
    if d.unused_data:
        raise CodecError("Credential token has trailing data.")
    return out


# ---------- stage 3: text ----------
def b64_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64_decode(token: str) -> bytes:
    if not isinstance(token, str) or not _B64_RE.match(token) or len(token) % 4 == 1:
        raise CodecError("Credential token is not valid base64.")
    try:
        raw = base64.b64decode(token + "=" * (-len(token) % 4), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise CodecError("Credential token is not valid base64.") from e
    # Unused low bits in the last character must be zero.
    if b64_encode(raw) != token:
        raise CodecError("Credential token is not canonical base64.")
    return raw


# ---------- pipeline ----------
def encode(bundle: CredentialBundle) -> str:
    return b64_encode(compress(serialize(bundle)))


def decode(token: str) -> CredentialBundle:
    return deserialize(decompress(b64_decode(str(token).strip())))
