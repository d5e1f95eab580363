"""Bech32 encoding (BIP-173) for Cardano addresses.

Cardano addresses are longer than the 90 characters BIP-173 allows, so
no length limit is enforced here.  Only the original bech32 constant is
supported; Cardano does not use bech32m.
"""

from __future__ import annotations

from begin_cli.errors import input_error

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_CHECKSUM_LEN = 6


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i, gen in enumerate(_GENERATOR):
            if (top >> i) & 1:
                chk ^= gen
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: list[int]) -> list[int]:
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * _CHECKSUM_LEN) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(_CHECKSUM_LEN)]


def _verify_checksum(hrp: str, data: list[int]) -> bool:
    return _polymod(_hrp_expand(hrp) + data) == 1


def convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, pad: bool = True) -> list[int]:
    """Regroup a sequence of *from_bits*-wide integers into *to_bits*-wide ones.

    With ``pad=False`` leftover bits must be zero padding shorter than
    *from_bits*, otherwise ``ValueError`` is raised.
    """
    acc = 0
    bits = 0
    out: list[int] = []
    maxv = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValueError(f"Value {value} does not fit in {from_bits} bits")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & maxv)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise ValueError("Invalid padding in bech32 data")
    return out


def encode(hrp: str, payload: bytes) -> str:
    """Encode *payload* bytes under the human-readable prefix *hrp*."""
    if not hrp or any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise ValueError(f"Invalid bech32 prefix: {hrp!r}")
    hrp = hrp.lower()
    data = convert_bits(payload, 8, 5)
    combined = data + _create_checksum(hrp, data)
    return hrp + "1" + "".join(CHARSET[d] for d in combined)


def decode(text: str) -> tuple[str, bytes]:
    """Decode a bech32 string into ``(hrp, payload)``.

    Raises an ``INVALID_ADDRESS`` input error on any malformed input.
    """
    if not isinstance(text, str) or not text:
        raise _invalid("empty input")
    if text.lower() != text and text.upper() != text:
        raise _invalid("mixed case")
    if any(ord(c) < 33 or ord(c) > 126 for c in text):
        raise _invalid("invalid character")

    text = text.lower()
    sep = text.rfind("1")
    if sep < 1 or sep + _CHECKSUM_LEN + 1 > len(text):
        raise _invalid("missing separator or checksum")

    hrp = text[:sep]
    try:
        data = [CHARSET.index(c) for c in text[sep + 1:]]
    except ValueError:
        raise _invalid("character outside the bech32 alphabet") from None
    if not _verify_checksum(hrp, data):
        raise _invalid("checksum mismatch")

    try:
        payload = bytes(convert_bits(data[:-_CHECKSUM_LEN], 5, 8, pad=False))
    except ValueError as exc:
        raise _invalid(str(exc)) from None
    return hrp, payload


def _invalid(reason: str):
    return input_error(f"Invalid bech32 string: {reason}", code="INVALID_ADDRESS")
