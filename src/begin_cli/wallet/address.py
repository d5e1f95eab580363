"""Cardano address derivation (CIP-1852 / BIP32-Ed25519).

Keys are derived with the Icarus master-key scheme from the phrase entropy
and walked down ``m/1852'/1815'/account'/role/index``.  The payment key
lives under role 0 and the stake key under role 2, index 0.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Optional

from nacl.bindings import crypto_scalarmult_ed25519_base_noclamp

from begin_cli.errors import BeginCliError, input_error
from begin_cli.wallet import bech32
from begin_cli.wallet.networks import Network, NetworkId, resolve_network_id
from begin_cli.wallet.seed_phrase import Phrase, to_entropy

HARDENED = 0x80000000
PURPOSE = 1852
COIN_TYPE = 1815
ROLE_EXTERNAL = 0
ROLE_STAKING = 2

KEY_HASH_SIZE = 28
_PBKDF2_ROUNDS = 4096


def harden(index: int) -> int:
    return index | HARDENED


# ---------------------------------------------------------------------------
# Extended keys
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtendedKey:
    """A BIP32-Ed25519 extended private key (kL, kR, chain code)."""

    k_l: bytes
    k_r: bytes
    chain_code: bytes

    @classmethod
    def from_entropy(cls, entropy: bytes, passphrase: str = "") -> ExtendedKey:
        """Icarus master key from BIP-39 entropy."""
        xprv = bytearray(hashlib.pbkdf2_hmac(
            "sha512", passphrase.encode("utf-8"), entropy, _PBKDF2_ROUNDS, dklen=96
        ))
        xprv[0] &= 0b11111000
        xprv[31] &= 0b00011111
        xprv[31] |= 0b01000000
        return cls(bytes(xprv[:32]), bytes(xprv[32:64]), bytes(xprv[64:]))

    @classmethod
    def from_phrase(cls, phrase: Phrase, passphrase: str = "") -> ExtendedKey:
        return cls.from_entropy(to_entropy(phrase), passphrase)

    @property
    def public_key(self) -> bytes:
        return crypto_scalarmult_ed25519_base_noclamp(self.k_l)

    def derive(self, index: int) -> ExtendedKey:
        """Derive the child key at *index* (hardened when ``index >= 2**31``)."""
        index_bytes = index.to_bytes(4, "little")
        if index >= HARDENED:
            data = self.k_l + self.k_r + index_bytes
            z = hmac.new(self.chain_code, b"\x00" + data, hashlib.sha512).digest()
            c = hmac.new(self.chain_code, b"\x01" + data, hashlib.sha512).digest()
        else:
            data = self.public_key + index_bytes
            z = hmac.new(self.chain_code, b"\x02" + data, hashlib.sha512).digest()
            c = hmac.new(self.chain_code, b"\x03" + data, hashlib.sha512).digest()

        z_l = int.from_bytes(z[:28], "little")
        z_r = int.from_bytes(z[32:], "little")
        k_l = 8 * z_l + int.from_bytes(self.k_l, "little")
        k_r = (z_r + int.from_bytes(self.k_r, "little")) % (1 << 256)
        return ExtendedKey(
            k_l.to_bytes(32, "little"),
            k_r.to_bytes(32, "little"),
            c[32:],
        )

    def derive_path(self, path: Iterable[int]) -> ExtendedKey:
        key = self
        for index in path:
            key = key.derive(index)
        return key

    def to_bytes(self) -> bytes:
        """``kL || kR || public key || chain code``, the layout Cardano tools expect."""
        return self.k_l + self.k_r + self.public_key + self.chain_code


def account_key(phrase: Phrase, account_index: int = 0) -> ExtendedKey:
    root = ExtendedKey.from_phrase(phrase)
    return root.derive_path([harden(PURPOSE), harden(COIN_TYPE), harden(account_index)])


def payment_key(phrase: Phrase, account_index: int = 0, address_index: int = 0) -> ExtendedKey:
    return account_key(phrase, account_index).derive_path([ROLE_EXTERNAL, address_index])


def stake_key(phrase: Phrase, account_index: int = 0) -> ExtendedKey:
    return account_key(phrase, account_index).derive_path([ROLE_STAKING, 0])


def key_hash(public_key: bytes) -> bytes:
    """Blake2b-224 credential hash of a verification key."""
    return hashlib.blake2b(public_key, digest_size=KEY_HASH_SIZE).digest()


# ---------------------------------------------------------------------------
# Address encoding
# ---------------------------------------------------------------------------

class AddressType(IntEnum):
    """High nibble of the address header byte."""

    BASE = 0b0000
    ENTERPRISE = 0b0110
    REWARD = 0b1110


_PAYLOAD_SIZES = {
    AddressType.BASE: 2 * KEY_HASH_SIZE,
    AddressType.ENTERPRISE: KEY_HASH_SIZE,
    AddressType.REWARD: KEY_HASH_SIZE,
}

# Script-credential variants share the payload layout of their key twins.
_HEADER_TYPES = {
    0b0000: AddressType.BASE, 0b0001: AddressType.BASE,
    0b0010: AddressType.BASE, 0b0011: AddressType.BASE,
    0b0110: AddressType.ENTERPRISE, 0b0111: AddressType.ENTERPRISE,
    0b1110: AddressType.REWARD, 0b1111: AddressType.REWARD,
}


def _hrp(address_type: AddressType, network_id: NetworkId) -> str:
    prefix = "stake" if address_type is AddressType.REWARD else "addr"
    return prefix if network_id is NetworkId.MAINNET else f"{prefix}_test"


def encode_address(address_type: AddressType, network_id: NetworkId, *credentials: bytes) -> str:
    header = bytes([(address_type << 4) | network_id])
    return bech32.encode(_hrp(address_type, network_id), header + b"".join(credentials))


@dataclass(frozen=True)
class ParsedAddress:
    address_type: AddressType
    network_id: NetworkId
    payment_hash: Optional[bytes]
    stake_hash: Optional[bytes]


def parse_address(address: str) -> ParsedAddress:
    """Decode a Shelley address string.

    Raises an ``INVALID_ADDRESS`` input error for anything that is not a
    well-formed base, enterprise or reward address.
    """
    hrp, payload = bech32.decode(address)
    if not payload:
        raise input_error(f"Invalid address: {address}", code="INVALID_ADDRESS")

    header = payload[0]
    address_type = _HEADER_TYPES.get(header >> 4)
    try:
        network_id = NetworkId(header & 0x0F)
    except ValueError:
        network_id = None
    if address_type is None or network_id is None:
        raise input_error(f"Unsupported address header in {address}", code="INVALID_ADDRESS")
    if hrp != _hrp(address_type, network_id):
        raise input_error(
            f"Address prefix '{hrp}' does not match its network", code="INVALID_ADDRESS"
        )

    body = payload[1:]
    if len(body) != _PAYLOAD_SIZES[address_type]:
        raise input_error(f"Invalid address length: {address}", code="INVALID_ADDRESS")

    if address_type is AddressType.BASE:
        return ParsedAddress(address_type, network_id, body[:KEY_HASH_SIZE], body[KEY_HASH_SIZE:])
    if address_type is AddressType.ENTERPRISE:
        return ParsedAddress(address_type, network_id, body, None)
    return ParsedAddress(address_type, network_id, None, body)


def is_valid_address(address: str, network: str | int | Network | None = None) -> bool:
    """True if *address* parses, and matches *network* when given."""
    try:
        parsed = parse_address(address)
    except BeginCliError:
        return False
    if network is not None and parsed.network_id != resolve_network_id(network):
        return False
    return True


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DerivedAddresses:
    base_address: str
    enterprise_address: str
    stake_address: Optional[str]
    network: NetworkId

    def to_dict(self) -> dict:
        return {
            "base": self.base_address,
            "enterprise": self.enterprise_address,
            "stake": self.stake_address,
            "networkId": int(self.network),
        }


def derive_addresses(
    phrase: Phrase,
    network: str | int | Network,
    account_index: int = 0,
    address_index: int = 0,
) -> DerivedAddresses:
    """Derive the base, enterprise and stake addresses of a phrase.

    The result depends only on the arguments; the network changes the
    header byte and prefix but not the underlying key hashes.
    """
    network_id = resolve_network_id(network)
    account = account_key(phrase, account_index)
    payment_hash = key_hash(account.derive_path([ROLE_EXTERNAL, address_index]).public_key)
    stake_hash = key_hash(account.derive_path([ROLE_STAKING, 0]).public_key)

    return DerivedAddresses(
        base_address=encode_address(AddressType.BASE, network_id, payment_hash, stake_hash),
        enterprise_address=encode_address(AddressType.ENTERPRISE, network_id, payment_hash),
        stake_address=encode_address(AddressType.REWARD, network_id, stake_hash),
        network=network_id,
    )


def shorten_address(address: str, prefix_len: int = 12, suffix_len: int = 8) -> str:
    """``addr1qx2fxv2umy...wywfgse35a3x``; unchanged if already short."""
    if len(address) <= prefix_len + suffix_len + 3:
        return address
    return f"{address[:prefix_len]}...{address[-suffix_len:]}"
