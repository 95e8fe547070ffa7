from __future__ import annotations

from pathlib import Path

import pytest

from profix.engine.types import Finding, Selection
from profix.fixer import TextDocument, apply_finding, apply_fix, flatten_fix, unified_diff


def test_flatten_fix_leaves_single_line_untouched() -> None:
    assert flatten_fix("    int x = 0;") == "    int x = 0;"


def test_flatten_fix_joins_segments_with_single_space() -> None:
    assert flatten_fix("#include <stdio.h> \n int main(void)") == "#include <stdio.h> int main(void)"
    assert flatten_fix("  a\r\n\r\n  b  \n") == "  a b"


def test_apply_fix_rewrites_absolute_line() -> None:
    doc = TextDocument("header\nint x\nprintf(x)\nfooter\n")
    outcome = apply_fix(doc, start_line=1, relative_line=1, fix_text="int x = 0;")
    assert outcome.ok
    assert outcome.absolute_line == 1
    assert outcome.previous_text == "int x"
    assert doc.text == "header\nint x = 0;\nprintf(x)\nfooter\n"


def test_apply_fix_flattens_multiline_fix_into_one_line() -> None:
    doc = TextDocument("int main(void) {\n}\n")
    outcome = apply_fix(doc, start_line=0, relative_line=1, fix_text="#include <stdio.h>\nint main(void) {")
    assert outcome.ok
    assert doc.line_count() == 2
    assert doc.line_at(0) == "#include <stdio.h> int main(void) {"


def test_apply_fix_preserves_crlf_terminators() -> None:
    doc = TextDocument("a\r\nb\r\n")
    assert apply_fix(doc, start_line=0, relative_line=2, fix_text="B").ok
    assert doc.text == "a\r\nB\r\n"


def test_missing_target_line_does_not_mutate() -> None:
    doc = TextDocument("one\ntwo\n")
    outcome = apply_fix(doc, start_line=1, relative_line=5, fix_text="zzz")
    assert not outcome.ok
    assert outcome.error == "TargetLineNotFound"
    assert outcome.reason == "Cannot find target line 5"
    assert doc.text == "one\ntwo\n"
    assert doc.version == 0


def test_non_positive_relative_line_is_not_found() -> None:
    doc = TextDocument("one\ntwo\n")
    outcome = apply_fix(doc, start_line=1, relative_line=0, fix_text="zzz")
    assert outcome.error == "TargetLineNotFound"
    assert doc.text == "one\ntwo\n"


def test_read_only_document_rejects_edit() -> None:
    doc = TextDocument("one\n", read_only=True)
    outcome = apply_fix(doc, start_line=0, relative_line=1, fix_text="ONE")
    assert not outcome.ok
    assert outcome.error == "EditRejected"
    assert doc.text == "one\n"


def test_fix_at_one_line_keeps_other_mappings() -> None:
    doc = TextDocument("0\n1\n2\n3\n4\n")
    selection = doc.selection(1, 3)
    assert selection.text == "1\n2\n3"

    assert apply_fix(doc, start_line=selection.start_line, relative_line=2, fix_text="two\nand more").ok
    assert apply_fix(doc, start_line=selection.start_line, relative_line=3, fix_text="three").ok
    assert apply_fix(doc, start_line=selection.start_line, relative_line=1, fix_text="one").ok
    assert doc.text == "0\none\ntwo and more\nthree\n4\n"


def test_applying_same_fix_twice_is_idempotent_for_the_document() -> None:
    doc = TextDocument("int x\n")
    apply_fix(doc, start_line=0, relative_line=1, fix_text="int x = 0;")
    apply_fix(doc, start_line=0, relative_line=1, fix_text="int x = 0;")
    assert doc.text == "int x = 0;\n"


def test_apply_finding_without_fix_reports_failure() -> None:
    doc = TextDocument("int x\n")
    finding = Finding(relative_line=1, severity="Warning", description="hmm")
    outcome = apply_finding(doc, Selection(text="int x"), finding)
    assert not outcome.ok
    assert outcome.error == "NoFix"
    assert doc.text == "int x\n"


def test_document_roundtrip_through_file(tmp_path: Path) -> None:
    path = tmp_path / "main.c"
    path.write_bytes(b"int x\r\nreturn x;\r\n")
    doc = TextDocument.from_path(path)
    assert doc.line_at(0) == "int x"
    apply_fix(doc, start_line=0, relative_line=1, fix_text="int x = 0;")
    doc.write_to(path, backup=True)

    assert path.read_bytes() == b"int x = 0;\r\nreturn x;\r\n"
    backup = path.with_suffix(".c.profix.bak")
    assert backup.read_bytes() == b"int x\r\nreturn x;\r\n"


def test_unified_diff_is_empty_without_changes(tmp_path: Path) -> None:
    assert unified_diff("a\n", "a\n", path=tmp_path / "f") == ""
    assert "+b" in unified_diff("a\n", "b\n", path=tmp_path / "f")


def test_form_feed_is_not_a_line_break() -> None:
    doc = TextDocument("int a;\x0c\nint b\nint c\n")
    selection = doc.selection(0, 1)
    assert selection.lines == ["int a;\x0c", "int b"]
    assert doc.line_count() == 3

    outcome = apply_fix(doc, start_line=0, relative_line=2, fix_text="int b = 0;", line_count=selection.line_count)
    assert outcome.ok
    assert doc.text == "int a;\x0c\nint b = 0;\nint c\n"


@pytest.mark.parametrize("separator", ["\x0b", "\x1c", "\x85", "\u2028", "\u2029"])
def test_unicode_separators_stay_inside_their_line(separator: str) -> None:
    doc = TextDocument(f"a{separator}b\nc\n")
    assert doc.line_count() == 2
    assert doc.line_at(0) == f"a{separator}b"
    assert doc.replace_line(0, f"x{separator}y")
    assert doc.text == f"x{separator}y\nc\n"
    assert flatten_fix(f"a{separator}b") == f"a{separator}b"


def test_mixed_terminators_are_kept_per_line() -> None:
    doc = TextDocument("a\rb\r\nc\nd")
    assert [doc.line_at(i) for i in range(doc.line_count())] == ["a", "b", "c", "d"]
    doc.replace_line(1, "B")
    assert doc.text == "a\rB\r\nc\nd"


def test_line_past_selection_is_not_found() -> None:
    doc = TextDocument("one\ntwo\nthree\nfour\nfive\n")
    selection = doc.selection(0, 1)
    outcome = apply_fix(doc, start_line=0, relative_line=5, fix_text="ZZZ", line_count=selection.line_count)
    assert not outcome.ok
    assert outcome.error == "TargetLineNotFound"
    assert outcome.reason == "Cannot find target line 5"
    assert doc.text == "one\ntwo\nthree\nfour\nfive\n"

    stray = apply_finding(doc, selection, Finding(relative_line=3, severity="Error", description="x", proposed_fix="ZZZ"))
    assert stray.error == "TargetLineNotFound"
    assert doc.line_at(2) == "three"
