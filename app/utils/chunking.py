import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

_WORD_PATTERN = re.compile(r"\S+")


@dataclass(frozen=True)
class TextChunk:
    text: str
    start_char: int
    end_char: int
    token_count: int


class ChunkingStrategy(ABC):
    @abstractmethod
    def chunk(self, text: str) -> List[TextChunk]:
        pass


class TokenWindowChunker(ChunkingStrategy):
    """
    Sliding word window sized by an approximate token budget.

    Tokens are estimated as ``words * tokens_per_word``. Each chunk is the exact
    slice of the source text covering its words, so ``text[start_char:end_char]``
    always equals ``chunk.text``. Consecutive chunks share ``overlap_words`` words.
    """

    def __init__(self, chunk_size_tokens: int = 500, overlap_tokens: int = 50, tokens_per_word: float = 1.33):
        if tokens_per_word <= 0:
            raise ValueError("tokens_per_word must be positive")

        self.chunk_size_tokens = chunk_size_tokens
        self.overlap_tokens = overlap_tokens
        self.tokens_per_word = tokens_per_word
        self.words_per_chunk = int(chunk_size_tokens / tokens_per_word)
        self.overlap_words = int(overlap_tokens / tokens_per_word)

        if self.words_per_chunk < 1:
            raise ValueError("chunk_size_tokens is too small for a single word")
        if not 0 <= self.overlap_words < self.words_per_chunk:
            raise ValueError("overlap must be non-negative and smaller than the chunk size")

    @property
    def stride(self) -> int:
        return self.words_per_chunk - self.overlap_words

    def chunk(self, text: str) -> List[TextChunk]:
        if not text or not text.strip():
            return []

        words = [(m.start(), m.end()) for m in _WORD_PATTERN.finditer(text)]
        total = len(words)

        chunks: List[TextChunk] = []
        start = 0
        while True:
            end = min(start + self.words_per_chunk, total)
            start_char = words[start][0]
            end_char = words[end - 1][1]
            chunks.append(TextChunk(
                text=text[start_char:end_char],
                start_char=start_char,
                end_char=end_char,
                token_count=int((end - start) * self.tokens_per_word),
            ))

            # the window already reached the last word: the tail is consumed
            if end >= total:
                break
            start += self.stride

        return chunks
