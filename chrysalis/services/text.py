# chrysalis/services/text.py
from __future__ import annotations
import difflib
import html
import re
from typing import List

from chrysalis.schemas import DiffSegment

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_TAG_RE = re.compile(r"</?(p|div|br|li|h[1-6]|blockquote)\b[^>]*>", re.IGNORECASE)
_TOKEN_RE = re.compile(r"\S+|\s+")


def strip_html(text: str) -> str:
    """Editor content is HTML; block tags become whitespace so words don't fuse."""
    s = _BLOCK_TAG_RE.sub(" ", text or "")
    s = _TAG_RE.sub("", s)
    return html.unescape(s)


def count_words(text: str) -> int:
    return len(strip_html(text).split())


def diff_words(base: str, other: str) -> List[DiffSegment]:
    """Word-level diff of two contents, HTML stripped. Whitespace runs are kept as tokens."""
    a = _TOKEN_RE.findall(strip_html(base))
    b = _TOKEN_RE.findall(strip_html(other))
    out: List[DiffSegment] = []

    def _emit(op: str, tokens: List[str]):
        if not tokens:
            return
        text = "".join(tokens)
        # merge with the previous segment of the same kind
        if out and out[-1].op == op:
            out[-1] = DiffSegment(op=op, text=out[-1].text + text)
        else:
            out.append(DiffSegment(op=op, text=text))

    sm = difflib.SequenceMatcher(a=a, b=b, autojunk=False)
    for tag, i1, i2, j1, j2 in sm.get_opcodes():
        if tag == "equal":
            _emit("equal", a[i1:i2])
        elif tag == "delete":
            _emit("delete", a[i1:i2])
        elif tag == "insert":
            _emit("insert", b[j1:j2])
        else:  # replace
            _emit("delete", a[i1:i2])
            _emit("insert", b[j1:j2])
    return out


def words_in(segments: List[DiffSegment], op: str) -> int:
    return sum(len(s.text.split()) for s in segments if s.op == op)
