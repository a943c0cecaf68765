"""Unit tests for the token-window chunker."""

import pytest

from app.utils.chunking import TokenWindowChunker


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


class TestTokenWindowChunker:
    def test_defaults(self) -> None:
        chunker = TokenWindowChunker()
        assert chunker.words_per_chunk == 375
        assert chunker.overlap_words == 37
        assert chunker.stride == 338

    def test_blank_text_yields_no_chunks(self) -> None:
        assert TokenWindowChunker().chunk("") == []
        assert TokenWindowChunker().chunk("   \n\t ") == []

    def test_short_text_is_one_exact_slice(self) -> None:
        text = "  hello   world \n"
        chunks = TokenWindowChunker().chunk(text)

        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.text == "hello   world"
        assert text[chunk.start_char:chunk.end_char] == chunk.text
        assert chunk.token_count == int(2 * 1.33)

    def test_windows_overlap_and_cover_the_tail(self) -> None:
        chunker = TokenWindowChunker(chunk_size_tokens=40, overlap_tokens=8, tokens_per_word=1.33)
        assert (chunker.words_per_chunk, chunker.overlap_words) == (30, 6)

        text = _words(100)
        chunks = chunker.chunk(text)

        assert len(chunks) == 4
        for chunk in chunks:
            assert text[chunk.start_char:chunk.end_char] == chunk.text
        for previous, current in zip(chunks, chunks[1:]):
            assert previous.text.split()[-6:] == current.text.split()[:6]
        assert chunks[-1].text.split()[-1] == "w99"
        assert len(chunks[-1].text.split()) == 28

    def test_exact_window_is_a_single_chunk(self) -> None:
        chunker = TokenWindowChunker(chunk_size_tokens=40, overlap_tokens=8)
        assert len(chunker.chunk(_words(30))) == 1

    def test_one_word_past_the_window_adds_a_tail_chunk(self) -> None:
        chunker = TokenWindowChunker(chunk_size_tokens=40, overlap_tokens=8)
        chunks = chunker.chunk(_words(31))

        assert len(chunks) == 2
        assert chunks[1].text.split() == [f"w{i}" for i in range(24, 31)]

    def test_whitespace_inside_a_chunk_is_preserved(self) -> None:
        text = "alpha  beta\n\ngamma"
        [chunk] = TokenWindowChunker().chunk(text)
        assert chunk.text == text

    def test_is_deterministic(self) -> None:
        chunker = TokenWindowChunker(chunk_size_tokens=40, overlap_tokens=8)
        text = _words(77)
        assert chunker.chunk(text) == chunker.chunk(text)

    @pytest.mark.parametrize(
        "size,overlap",
        [(10, 10), (10, 20), (0, 0), (40, -2)],
    )
    def test_invalid_configuration_is_rejected(self, size: int, overlap: int) -> None:
        with pytest.raises(ValueError):
            TokenWindowChunker(chunk_size_tokens=size, overlap_tokens=overlap)
