from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Tuple

import qrcode
from qrcode.exceptions import DataOverflowError

from sshmgr.core.errors import TokenTooLongError

MAX_QR_VERSION = 40


@dataclass(frozen=True)
class RenderedBarcode:
    png: bytes
    version: int
    width: int
    height: int


class BarcodeRenderer:
    """
    QR renderer for credential tokens.

    Always error-correction level L and the smallest version that holds the
    whole token; anything larger than max_version is refused rather than cropped.
    """

    def __init__(
        self,
        *,
        max_version: int = MAX_QR_VERSION,
        box_size: int = 10,
        border: int = 4,
        dark_color: Tuple[int, int, int] = (123, 255, 6),
        light_color: Tuple[int, int, int] = (28, 32, 31),
    ):
        if not 1 <= int(max_version) <= MAX_QR_VERSION:
            raise ValueError("max_version must be within 1..40")
        self.max_version = int(max_version)
        self.box_size = int(box_size)
        self.border = int(border)
        self.dark_color = tuple(dark_color)
        self.light_color = tuple(light_color)

    def render_barcode(self, token: str) -> RenderedBarcode:
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(token)
        try:
            qr.make(fit=True)
        except DataOverflowError as e:
            raise TokenTooLongError(length=len(token)) from e
        if qr.version > self.max_version:
            raise TokenTooLongError(length=len(token), version=qr.version, max_version=self.max_version)

        img = qr.make_image(fill_color=self.dark_color, back_color=self.light_color).get_image()
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return RenderedBarcode(png=buf.getvalue(), version=int(qr.version), width=img.size[0], height=img.size[1])
