"""
Cleanup pipeline for loosely structured text (PDF pages, flattened slides).

The stages run in a fixed order:

1. hyphenation repair: ``exam-\\nple`` -> ``example``
2. line merging: a line break after sentence-terminal punctuation becomes a
   paragraph break, every other line break becomes a space
3. list detection: bullet glyphs and ``N.`` prefixes become Markdown lists
4. citation formatting: ``[12]`` / ``[3, 4]`` become ``<sup>[12]</sup>``

Running the pipeline on its own output returns the same text.
"""

import re

_PARAGRAPH_MARK = "\ue000"

_HYPHENATED_BREAK = re.compile(r"([a-z])-\s*\n\s*([a-z])")
_SENTENCE_BREAK = re.compile(r"([。！？.?!:;])[ \t]*\n")
_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v\u00a0]+")
_PARAGRAPH_PADDING = re.compile(r"[ \t]*\n\n[ \t]*")
_BULLET_ITEM = re.compile(r"^[•●▪\-][ \t]+", re.MULTILINE)
_NUMBERED_ITEM = re.compile(r"^(\d+)\.[ \t]+", re.MULTILINE)
_CITATION = re.compile(r"(?<!<sup>)(\[\d+(?:,\s*\d+)*\])(?!</sup>)")


class TextNormalizer:
    """Stateless text cleanup, every stage is a pure string transform."""

    @classmethod
    def fix_hyphenation(cls, text: str) -> str:
        return _HYPHENATED_BREAK.sub(r"\1\2", text)

    @classmethod
    def merge_lines(cls, text: str) -> str:
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = _SENTENCE_BREAK.sub(lambda match: match.group(1) + _PARAGRAPH_MARK, text)
        text = text.replace("\n", " ").replace(_PARAGRAPH_MARK, "\n\n")
        text = _HORIZONTAL_SPACE.sub(" ", text)
        return _PARAGRAPH_PADDING.sub("\n\n", text)

    @classmethod
    def detect_lists(cls, text: str) -> str:
        text = _BULLET_ITEM.sub("- ", text)
        return _NUMBERED_ITEM.sub(r"\1. ", text)

    @classmethod
    def format_citations(cls, text: str) -> str:
        return _CITATION.sub(r"<sup>\1</sup>", text)

    @classmethod
    def process(cls, text: str) -> str:
        if not text:
            return ""
        text = cls.fix_hyphenation(text)
        text = cls.merge_lines(text)
        text = cls.detect_lists(text)
        text = cls.format_citations(text)
        return text.strip()
