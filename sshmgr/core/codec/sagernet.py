"""
SagerNet "sn://ssh?..." share links.

SagerNet stores SSH profiles as Kryo-serialized beans; the link carries that
blob zlib-compressed and base64url-encoded. Kryo writes ASCII strings with the
high bit set on their final byte, which is why every string goes through
_kryo_ascii().
"""
from __future__ import annotations

import struct
import zlib

from sshmgr.core.clock import format_date
from sshmgr.core.codec.bundle import CredentialBundle, b64_encode
from sshmgr.core.errors import CodecError

SCHEME = "sn://ssh?"

_BEAN_HEADER = b"\x00\x00\x00\x00"
_AUTH_PASSWORD = b"\x01\x00\x00\x00"
_NAME_MARKER = b"\x81\x01\x00\x00\x00\xa1"
_BEAN_TRAILER = b"\x00\x00\x00\x00"


def _kryo_ascii(value: str, what: str) -> bytes:
    if not value or not value.isascii():
        raise CodecError("SagerNet links need non-empty ASCII fields.", field=what)
    raw = bytearray(value.encode("ascii"))
    raw[-1] |= 0x80
    return bytes(raw)


def link_title(bundle: CredentialBundle, label: str = "SSH") -> str:
    return f"{label}({bundle.username}) {bundle.location} {format_date(bundle.expiry_date)}"


def sagernet_link(bundle: CredentialBundle, *, label: str = "SSH") -> str:
    """Link for the bundle's first port; SagerNet profiles hold a single port."""
    bean = b"".join(
        [
            _BEAN_HEADER,
            _kryo_ascii(bundle.server_address, "server_address"),
            struct.pack("<I", bundle.ports[0]),
            _kryo_ascii(bundle.username, "username"),
            _AUTH_PASSWORD,
            _kryo_ascii(bundle.secret, "secret"),
            _NAME_MARKER,
            link_title(bundle, label).encode("utf-8"),
            _BEAN_TRAILER,
        ]
    )
    return SCHEME + b64_encode(zlib.compress(bean))
