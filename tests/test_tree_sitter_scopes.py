import unittest

# Real Tree-sitter must be available for these tests
try:
    from tree_sitter_language_pack import get_parser  # noqa: F401
except ModuleNotFoundError:  # pragma: no cover - environment dependent
    import pytest

    pytest.skip("tree_sitter_language_pack not installed", allow_module_level=True)

from tokenizers import Tokenizer
from tokenizers.models import WordLevel
from tokenizers.pre_tokenizers import Whitespace

from codechunk.Chunk import IndexChunkOptions
from codechunk.chunker import chunk_source, index_chunks
from codechunk.errors import ParseError
from codechunk.refill import refill_chunks
from codechunk.scope_graph import Scope, top_level_ranges
from codechunk.tokenization import HFTokenizer
from codechunk.tree_sitter_scopes import (
    MAX_PARSE_BYTES,
    build_scope_graph,
    detect_lang_id,
    normalize_lang_id,
)

from tests.fixtures import RUST_SAMPLE, ensure_fixtures, load_bytes

ADD = b"fn add(a: i32, b: i32) -> i32 {\n    a + b\n}"

PY_SAMPLE = b"""import os

def f():
    return 1


class C:
    def m(self):
        return os.sep
"""


def _word_level_tokenizer() -> HFTokenizer:
    vocab = {"[UNK]": 0, "fn": 1, "let": 2, "return": 3}
    tok = Tokenizer(WordLevel(vocab, unk_token="[UNK]"))
    tok.pre_tokenizer = Whitespace()
    return HFTokenizer(tok)


class ScopeGraphFromTreeSitterTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        ensure_fixtures()

    def test_rust_functions_are_top_level(self):
        graph = build_scope_graph(load_bytes("mem.rs"), "rust")
        ranges = top_level_ranges(graph)
        self.assertEqual(len(ranges), 2)
        self.assertEqual(RUST_SAMPLE[ranges[0].start_byte:ranges[0].end_byte], ADD)
        self.assertEqual((ranges[1].start.line, ranges[1].end.line), (4, 7))

    def test_root_spans_the_whole_file(self):
        graph = build_scope_graph(RUST_SAMPLE, "rust")
        root = graph.nodes[graph.root_scope()]
        self.assertEqual((root.range.start_byte, root.range.end_byte), (0, len(RUST_SAMPLE)))

    def test_nested_blocks_are_scopes_below_the_top_level(self):
        graph = build_scope_graph(RUST_SAMPLE, "rust")
        self.assertTrue(all(isinstance(node, Scope) for node in graph.nodes))
        self.assertGreater(len(graph.nodes), 3)
        self.assertEqual(len(top_level_ranges(graph)), 2)

    def test_python_methods_stay_inside_their_class(self):
        ranges = top_level_ranges(build_scope_graph(PY_SAMPLE, "py"))
        texts = [PY_SAMPLE[r.start_byte:r.end_byte] for r in ranges]
        self.assertEqual(len(texts), 2)
        self.assertTrue(texts[0].startswith(b"def f()"))
        self.assertTrue(texts[1].startswith(b"class C"))

    def test_unsupported_language(self):
        with self.assertRaises(ParseError):
            build_scope_graph(b"IDENTIFICATION DIVISION.", "cobol")

    def test_oversized_input_is_rejected(self):
        with self.assertRaises(ParseError) as ctx:
            build_scope_graph(b" " * (MAX_PARSE_BYTES + 1), "rust")
        self.assertIn("too large", str(ctx.exception))


class LanguageDetectionTests(unittest.TestCase):
    def test_extensions(self):
        self.assertEqual(detect_lang_id("src/lib.rs"), "rust")
        self.assertEqual(detect_lang_id("pkg/mod.PY"), "python")
        self.assertIsNone(detect_lang_id("Makefile"))
        self.assertIsNone(detect_lang_id("notes.unknown"))

    def test_aliases(self):
        self.assertEqual(normalize_lang_id(" RS "), "rust")
        self.assertEqual(normalize_lang_id("golang"), "go")
        self.assertEqual(normalize_lang_id("kotlin"), "kotlin")



class EndToEndTests(unittest.TestCase):
    def test_chunk_source_returns_one_chunk_per_function(self):
        chunks = chunk_source("mem.rs", RUST_SAMPLE, "rust")
        self.assertEqual(len(chunks), 2)
        joined = "".join(c.snippet for c in chunks)
        self.assertIn("fn add", joined)
        self.assertIn("fn main", joined)

    def test_index_hit_refills_to_the_whole_function(self):
        opt = IndexChunkOptions(min_chunk_tokens=1, max_chunk_tokens=64)
        chunks = index_chunks("repo", "mem.rs", RUST_SAMPLE, "rust", _word_level_tokenizer(), opt)
        hit = next(c for c in chunks if "a + b" in c.text or "fn add" in c.text)

        context = refill_chunks("mem.rs", RUST_SAMPLE, "rust", [hit])
        self.assertEqual(len(context), 1)
        self.assertIn(ADD.decode(), context[0].snippet)


if __name__ == "__main__":
    unittest.main(verbosity=2)
