import random
from typing import Optional, Set

from Sora_Content_Scraper.src.config import CODE_ALPHABET, CODE_LENGTH
from Sora_Content_Scraper.src.errors import KeyspaceExhaustedError


class CodeGenerator:
    """Uniform random codes over a fixed alphabet. Not cryptographically strong."""

    def __init__(self, alphabet: str = CODE_ALPHABET, length: int = CODE_LENGTH,
                 rng: Optional[random.Random] = None):
        self.alphabet = alphabet
        self.length = length
        self.rng = rng or random.Random()

    @property
    def keyspace(self) -> int:
        return len(self.alphabet) ** self.length

    def next(self) -> str:
        return ''.join(self.rng.choice(self.alphabet) for _ in range(self.length))

    def fill_batch(self, existing: Set[str], size: int) -> Set[str]:
        """Draw ``size`` distinct codes, none of which is in ``existing``."""
        if len(existing) + size > self.keyspace:
            raise KeyspaceExhaustedError(
                f"Only {self.keyspace - len(existing)} untried codes left, batch needs {size}"
            )

        batch = set()
        while len(batch) < size:
            code = self.next()
            if code not in existing and code not in batch:
                batch.add(code)
        return batch
