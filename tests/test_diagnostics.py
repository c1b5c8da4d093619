from dotpreview.rendering.diagnostics import classify, prioritize, summarize
from dotpreview.rendering.models import Issue, Severity

STDERR = """\
Warning: <stdin>: syntax ambiguity - badly delimited number '2a' in line 3 of <stdin> splits into two tokens
Error: <stdin>: syntax error in line 7 near '->'
this line has no marker in line 9
warning: node b, port x unrecognized
"""


def test_classify_extracts_severity_and_line() -> None:
    issues = classify(STDERR)

    assert [(issue.severity, issue.line, issue.numbered) for issue in issues] == [
        (Severity.WARNING, 3, True),
        (Severity.ERROR, 7, True),
        (Severity.WARNING, 1, False),
    ]
    assert issues[1].message == "Error: <stdin>: syntax error in line 7 near '->'"


def test_classify_understands_near_line_phrasing() -> None:
    issues = classify("Error: syntax error near line 12\n")

    assert issues == [Issue(Severity.ERROR, 12, "Error: syntax error near line 12")]


def test_classify_empty_input() -> None:
    assert classify("") == []
    assert classify(None) == []


def test_prioritize_keeps_most_severe_issue_per_line() -> None:
    issues = [
        Issue(Severity.WARNING, 4, "first warning"),
        Issue(Severity.ERROR, 4, "the error"),
        Issue(Severity.ERROR, 2, "earlier line"),
        Issue(Severity.WARNING, 4, "second warning"),
    ]

    assert [issue.message for issue in prioritize(issues)] == ["earlier line", "the error"]


def test_prioritize_first_issue_wins_a_tie() -> None:
    issues = [Issue(Severity.ERROR, 5, "reported first"), Issue(Severity.ERROR, 5, "reported second")]

    assert [issue.message for issue in prioritize(issues)] == ["reported first"]


def test_summarize_formats_first_issue() -> None:
    assert summarize(STDERR) == "Warning on line 3: of <stdin> splits into two tokens"
    assert summarize("Error: <stdin>: syntax error in line 7 near '->'") == "Error on line 7: near '->'"


def test_summarize_fallbacks() -> None:
    assert summarize("", 3) == "Graphviz 'dot' failed with exit code 3"
    assert summarize(None) == "Unknown Graphviz error"
    assert summarize("  segmentation fault  ") == "segmentation fault"
    assert summarize("Warning: no location here") == "Warning: no location here"
    assert len(summarize("x" * 400)) == 150
