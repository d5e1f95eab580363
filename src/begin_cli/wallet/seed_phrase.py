"""BIP-39 seed phrase generation and validation."""

from __future__ import annotations

from typing import Sequence, Union

from mnemonic import Mnemonic

from begin_cli.errors import invalid_mnemonic

# Entropy bits per supported phrase length.
STRENGTH_BY_WORDS: dict[int, int] = {12: 128, 15: 160, 18: 192, 21: 224, 24: 256}
DEFAULT_WORDS = 24

_english = Mnemonic("english")

Phrase = Union[str, Sequence[str]]


def normalize(phrase: Phrase) -> list[str]:
    """Split a phrase into lowercase words, collapsing whitespace."""
    if isinstance(phrase, str):
        return phrase.lower().split()
    return [w.strip().lower() for w in phrase if w.strip()]


def generate(words: int = DEFAULT_WORDS) -> list[str]:
    """Generate a new phrase from the OS CSPRNG."""
    if words not in STRENGTH_BY_WORDS:
        raise ValueError(f"Unsupported phrase length {words}. Use one of {sorted(STRENGTH_BY_WORDS)}")
    return _english.generate(strength=STRENGTH_BY_WORDS[words]).split()


def validate(phrase: Phrase) -> bool:
    """Check word count, word list membership and the BIP-39 checksum."""
    words = normalize(phrase)
    if len(words) not in STRENGTH_BY_WORDS:
        return False
    if any(w not in _english.wordlist for w in words):
        return False
    return _english.check(" ".join(words))


def to_entropy(phrase: Phrase) -> bytes:
    """Return the entropy bytes encoded by a valid phrase."""
    words = normalize(phrase)
    if not validate(words):
        raise invalid_mnemonic()
    return bytes(_english.to_entropy(" ".join(words)))
