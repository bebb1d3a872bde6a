from chrysalis.services.text import count_words, diff_words, strip_html


def test_count_words_strips_markup():
    assert count_words("") == 0
    assert count_words("<p></p>") == 0
    assert count_words("<p>Hello&nbsp;world</p><p>again</p>") == 3
    assert count_words("one<br>two") == 2
    assert count_words("  spaced   out\ntext ") == 3


def test_strip_html_unescapes_entities():
    assert strip_html("<b>fish &amp; chips</b>") == "fish & chips"


def test_diff_words_marks_changes():
    segments = diff_words("the cat sat", "the dog sat down")
    ops = [(s.op, s.text.strip()) for s in segments if s.text.strip()]
    assert ("delete", "cat") in ops
    assert ("insert", "dog") in ops
    assert ops[-1] == ("insert", "down")
    assert "".join(s.text for s in segments if s.op != "delete") == "the dog sat down"


def test_diff_identical_is_single_equal_segment():
    segments = diff_words("<p>same words</p>", "<p>same words</p>")
    assert [s.op for s in segments] == ["equal"]
