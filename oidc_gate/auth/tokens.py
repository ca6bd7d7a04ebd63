"""
Random state values for the authorization redirect.
"""

import random
import secrets
import string
from typing import Optional

# 52 letters, no digits
STATE_ALPHABET = string.ascii_lowercase + string.ascii_uppercase


class StateGenerator:
    """
    Produces unguessable CSRF state values.

    Each character is drawn uniformly from STATE_ALPHABET. By default the
    source is the operating system's CSPRNG; pass a seeded random.Random
    (or use seeded()) for reproducible values in tests.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng if rng is not None else secrets.SystemRandom()

    @classmethod
    def seeded(cls, seed: int) -> "StateGenerator":
        """Deterministic generator. Never use outside tests."""
        return cls(random.Random(seed))

    def generate(self, length: int) -> str:
        """
        Generate a state value.

        Args:
            length: Number of characters, at least 1

        Returns:
            String of exactly `length` characters from STATE_ALPHABET

        Raises:
            ValueError: If length is less than 1
        """
        if length < 1:
            raise ValueError(f"State length must be at least 1, got {length}")
        return "".join(self._rng.choice(STATE_ALPHABET) for _ in range(length))
