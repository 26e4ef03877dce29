from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from typing import Literal

import qrcode
from qrcode.image.svg import SvgImage


ArtifactKind = Literal["qr", "pairing_code"]

# Digits-only codes, or WhatsApp's 8-char alphanumeric codes (optionally "ABCD-EFGH").
_PAIRING_CODE_RE = re.compile(r"^(?:\d{4,12}|[0-9A-Z]{4}-?[0-9A-Z]{4})$")

_SVG_DATA_URL_PREFIX = "data:image/svg+xml;base64,"


@dataclass(frozen=True, slots=True)
class BootstrapArtifact:
    """
    What the registering caller shows to the user to link the device.

    - `kind="qr"`: `value` is an SVG data URL; `raw` is the QR payload.
    - `kind="pairing_code"`: `value` and `raw` are the code itself.
    """

    kind: ArtifactKind
    value: str
    raw: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "value": self.value}


def is_pairing_code(token: str) -> bool:
    return bool(_PAIRING_CODE_RE.match(token.strip()))


def render_qr_data_url(payload: str) -> str:
    img = qrcode.make(payload, image_factory=SvgImage)
    svg = img.to_string()
    if isinstance(svg, str):
        svg = svg.encode("utf-8")
    return _SVG_DATA_URL_PREFIX + base64.b64encode(svg).decode("ascii")


class BootstrapIssuer:
    def issue(self, raw_token: str) -> BootstrapArtifact:
        token = raw_token.strip()
        if not token:
            raise ValueError("empty bootstrap token")
        if is_pairing_code(token):
            return BootstrapArtifact(kind="pairing_code", value=token, raw=token)
        return BootstrapArtifact(kind="qr", value=render_qr_data_url(token), raw=token)
