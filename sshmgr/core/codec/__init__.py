from sshmgr.core.codec.bundle import FORMAT_VERSION, CredentialBundle, decode, encode
from sshmgr.core.codec.render import BarcodeRenderer, RenderedBarcode
from sshmgr.core.codec.sagernet import sagernet_link

__all__ = [
    "FORMAT_VERSION",
    "CredentialBundle",
    "decode",
    "encode",
    "BarcodeRenderer",
    "RenderedBarcode",
    "sagernet_link",
]
