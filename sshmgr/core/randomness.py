from __future__ import annotations

import math
import random
import secrets
import string
from typing import Optional, Sequence

USERNAME_ALPHABET = string.ascii_lowercase + string.digits
# No quotes, backslash or backtick: secrets end up inside Markdown code spans.
SECRET_ALPHABET = string.ascii_letters + string.digits + "!#%+-=@^_~"

MIN_SECRET_ENTROPY_BITS = 60.0


def secret_entropy_bits(length: int, alphabet: Sequence[str] = SECRET_ALPHABET) -> float:
    return float(length) * math.log2(len(alphabet))


class RandomSource:
    """
    Uniform choice over an alphabet.

    Production uses SystemRandomSource; tests use SeededRandomSource so that
    generated usernames and secrets are reproducible.
    """

    def choice(self, alphabet: Sequence[str]) -> str:
        raise NotImplementedError

    def token(self, alphabet: Sequence[str], length: int) -> str:
        return "".join(self.choice(alphabet) for _ in range(int(length)))


class SystemRandomSource(RandomSource):
    def choice(self, alphabet: Sequence[str]) -> str:
        return secrets.choice(alphabet)


class SeededRandomSource(RandomSource):
    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def choice(self, alphabet: Sequence[str]) -> str:
        return self._rng.choice(alphabet)


def generate_username(source: RandomSource, prefix: str, suffix_length: int) -> str:
    return f"{prefix}{source.token(USERNAME_ALPHABET, suffix_length)}"


def generate_secret(source: RandomSource, length: int) -> str:
    return source.token(SECRET_ALPHABET, length)
