"""Markdown building blocks shared by the readers."""


def escape_cell(text: str) -> str:
    """Make text safe for a single Markdown table cell."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text.replace("|", "\\|").replace("\n", "<br>")


def format_markdown_table(rows: list[list[str]], *, width: int | None = None) -> str:
    """
    Render rows as a Markdown table whose first row is the header.

    Rows are padded with empty cells (and cut) to ``width`` columns, which
    defaults to the widest row.
    """
    if not rows:
        return ""
    if width is None:
        width = max(len(row) for row in rows)
    if width <= 0:
        return ""
    padded = [(list(row) + [""] * width)[:width] for row in rows]
    lines = [
        "| " + " | ".join(padded[0]) + " |",
        "| " + " | ".join(["---"] * width) + " |",
    ]
    for row in padded[1:]:
        lines.append("| " + " | ".join(row) + " |")
    return "\n".join(lines)
