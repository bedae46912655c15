import os
import sys
import unittest


SCRIPTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPTS_DIR not in sys.path:
    sys.path.insert(0, SCRIPTS_DIR)

from batchtts.text_chunker import (  # noqa: E402
    TextChunk,
    chunk_text,
    estimate_batch,
    join_chunks,
    split_paragraphs,
    split_sentences,
)


def _normalize(text: str) -> str:
    return " ".join(text.split())


class TextChunkerTests(unittest.TestCase):
    def test_short_text_is_single_unchanged_chunk(self) -> None:
        chunks = chunk_text("Hello world. This is a test.", 100)
        self.assertEqual(chunks, [TextChunk(index=0, text="Hello world. This is a test.")])

    def test_final_chunk_gets_terminal_period(self) -> None:
        chunks = chunk_text("Hello world", 100)
        self.assertEqual([c.text for c in chunks], ["Hello world."])

    def test_greedy_packing_respects_bound(self) -> None:
        chunks = chunk_text("Alpha beta. Gamma delta. Epsilon zeta.", 25)
        self.assertEqual([c.text for c in chunks], ["Alpha beta. Gamma delta.", "Epsilon zeta."])
        self.assertEqual([c.index for c in chunks], [0, 1])
        self.assertTrue(all(len(c.text) <= 25 for c in chunks))

    def test_closed_chunk_without_punctuation_still_fits(self) -> None:
        chunks = chunk_text("Word one\n\nword two", 17)
        self.assertEqual([c.text for c in chunks], ["Word one.", "word two."])

    def test_paragraph_boundary_inside_chunk_is_line_break(self) -> None:
        chunks = chunk_text("First para.\n\nSecond para.", 100)
        self.assertEqual([c.text for c in chunks], ["First para.\nSecond para."])

    def test_content_is_preserved(self) -> None:
        text = "Hello there.  How are   you?\n\nI am fine! Thanks."
        chunks = chunk_text(text, 20)
        self.assertEqual(
            [c.text for c in chunks],
            ["Hello there.", "How are you?", "I am fine! Thanks."],
        )
        self.assertEqual(_normalize(join_chunks(chunks)), _normalize(text))

    def test_rechunking_joined_output_is_stable(self) -> None:
        text = (
            "The quick brown fox jumps over the lazy dog. Pack my box with five dozen liquor jugs! "
            "How vexingly quick daft zebras jump? Sphinx of black quartz, judge my vow. "
            "Waltz, bad nymph, for quick jigs vex."
        )
        first = chunk_text(text, 60)
        second = chunk_text(join_chunks(first), 60)
        self.assertEqual(first, second)

    def test_rechunking_keeps_boundaries_across_paragraphs(self) -> None:
        text = "One short line.\n\nAnother short line. And one more sentence here.\n\nEnd."
        first = chunk_text(text, 40)
        second = chunk_text(join_chunks(first), 40)
        self.assertEqual([len(c.text) for c in first], [len(c.text) for c in second])

    def test_text_without_punctuation_stays_one_chunk_per_paragraph(self) -> None:
        text = " ".join(["word"] * 120)
        chunks = chunk_text(text, 50)
        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0].text, f"{text}.")

    def test_hard_split_bounds_unpunctuated_text(self) -> None:
        text = " ".join(["word"] * 120)
        chunks = chunk_text(text, 50, hard_split=True)
        self.assertGreater(len(chunks), 1)
        self.assertTrue(all(len(c.text) <= 50 for c in chunks))
        words = " ".join(c.text for c in chunks).replace(".", "").split()
        self.assertEqual(words, ["word"] * 120)

    def test_empty_and_blank_text(self) -> None:
        self.assertEqual(chunk_text("", 10), [])
        self.assertEqual(chunk_text("  \n\n \t ", 10), [])

    def test_invalid_bound_raises(self) -> None:
        with self.assertRaises(ValueError):
            chunk_text("Hello.", 0)

    def test_split_helpers(self) -> None:
        self.assertEqual(split_paragraphs("a\n\n\nb\n \nc"), ["a", "b", "c"])
        self.assertEqual(split_sentences("Hi!! Are  you there?  Yes."), ["Hi!!", "Are you there?", "Yes."])

    def test_estimate_batch(self) -> None:
        chunks = chunk_text("Alpha beta. Gamma delta. Epsilon zeta.", 25)
        mp3 = estimate_batch(chunks, "mp3")
        wav = estimate_batch(chunks, "wav")
        self.assertEqual(mp3.chunks, 2)
        self.assertEqual(mp3.estimated_seconds, 6)
        self.assertEqual(mp3.estimated_megabytes, 3.0)
        self.assertEqual(wav.estimated_megabytes, 6.0)
        self.assertEqual(mp3.characters, sum(len(c.text) for c in chunks))


if __name__ == "__main__":
    unittest.main()
