"""
Reader-set names and their decoder library equivalents.

Reader names are library-neutral (``code128``, ``ean13``...); each decode
backend maps them onto the symbol types of the library it wraps.
"""

from __future__ import annotations

import functools
import logging
import operator
from typing import Iterable, List

import cv2
import numpy as np
import zxingcpp
from pyzbar.pyzbar import ZBarSymbol, decode


logger = logging.getLogger(__name__)


PYZBAR_SYMBOLS = {
    "code128": ZBarSymbol.CODE128,
    "code39": ZBarSymbol.CODE39,
    "code39_vin": ZBarSymbol.CODE39,
    "ean13": ZBarSymbol.EAN13,
    "ean8": ZBarSymbol.EAN8,
    "codabar": ZBarSymbol.CODABAR,
    "i25": ZBarSymbol.I25,
    "upca": ZBarSymbol.UPCA,
    "qrcode": ZBarSymbol.QRCODE,
}

ZXING_FORMATS = {
    "code128": zxingcpp.BarcodeFormat.Code128,
    "code39": zxingcpp.BarcodeFormat.Code39,
    "code39_vin": zxingcpp.BarcodeFormat.Code39,
    "ean13": zxingcpp.BarcodeFormat.EAN13,
    "ean8": zxingcpp.BarcodeFormat.EAN8,
    "codabar": zxingcpp.BarcodeFormat.Codabar,
    "i25": zxingcpp.BarcodeFormat.ITF,
    "upca": zxingcpp.BarcodeFormat.UPCA,
    "qrcode": zxingcpp.BarcodeFormat.QRCode,
}


def to_gray(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 3:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    return frame


def pyzbar_symbols(readers: Iterable[str]) -> List[ZBarSymbol]:
    """Distinct pyzbar symbol types for a reader set; unknown names are skipped."""
    symbols = []
    for reader in sorted(readers):
        symbol = PYZBAR_SYMBOLS.get(reader)
        if symbol is None:
            logger.debug(f"No pyzbar symbol for reader '{reader}'")
            continue
        if symbol not in symbols:
            symbols.append(symbol)
    return symbols


def zxing_formats(readers: Iterable[str]):
    """Combined zxing-cpp format flags for a reader set."""
    formats = [ZXING_FORMATS[reader] for reader in sorted(readers) if reader in ZXING_FORMATS]
    if not formats:
        return None
    return functools.reduce(operator.or_, formats)


def decode_pyzbar(image: np.ndarray, symbols: List[ZBarSymbol]) -> List[str]:
    """
    Decode every symbol in an image with pyzbar.

    Returns:
        Raw decoded texts in detection order (may be empty)
    """
    if image is None or image.size == 0:
        return []

    texts = []
    for barcode in decode(image, symbols=symbols or None):
        try:
            text = barcode.data.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug(f"Skipping non-UTF-8 {barcode.type} payload")
            continue
        if text:
            texts.append(text)
    return texts
