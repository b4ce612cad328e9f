"""
OMML to LaTeX Conversion
========================

Translates Office Math Markup Language (OMML) subtrees, as embedded in Word
and PowerPoint documents, into inline LaTeX fragments.

Elements are matched by local name so that the ``m:`` prefix (or any other
prefix bound to the math namespace) does not matter.

Supported elements:
    - m:f (fraction) -> \\frac{num}{den}
    - m:sSup / m:sSub / m:sSubSup -> {base}^{sup} / {base}_{sub}
    - m:rad (radical) -> \\sqrt{base} or \\sqrt[deg]{base}
    - m:m (matrix) -> \\begin{matrix} a & b \\\\ c & d \\end{matrix}
    - m:acc (accent) -> \\vec, \\tilde, \\hat, \\bar, \\dot
    - m:nary (n-ary operator) -> \\sum, \\prod, \\int, \\bigcup, \\bigcap
    - m:d (delimiter) -> (a, b)
    - m:func, m:limLow, m:limUpp, m:bar, m:eqArr

Unknown elements fall through to the concatenation of their translated
children. Translation never raises: a broken formula degrades to an empty
string so the surrounding document still converts.
"""

import logging
from xml.etree.ElementTree import Element

logger = logging.getLogger(__name__)

IGNORED_TAGS = frozenset(
    {
        "argPr",
        "barPr",
        "borderBoxPr",
        "boxPr",
        "ctrlPr",
        "dPr",
        "eqArrPr",
        "funcPr",
        "limLowPr",
        "limUppPr",
        "mPr",
        "mrPr",
        "naryPr",
        "phantPr",
        "radPr",
        "rPr",
        "sSubPr",
        "sSupPr",
        "sSubSupPr",
        "sty",
        "val",
        "pos",
        "brk",
        "brkBin",
        "brkBinSub",
        "diff",
        "grow",
        "hideBot",
        "hideTop",
        "limLoc",
        "opEmu",
        "plcHide",
        "sepChr",
        "begChr",
        "endChr",
    }
)

CONTAINER_TAGS = frozenset(
    {"oMath", "oMathPara", "r", "e", "sup", "sub", "num", "den", "deg", "fName", "lim"}
)

ACCENT_TO_LATEX = {
    "⃗": "\\vec",
    "̃": "\\tilde",
    "̂": "\\hat",
    "̄": "\\bar",
    "̇": "\\dot",
}

NARY_TO_LATEX = {
    "∑": "\\sum",
    "∏": "\\prod",
    "∫": "\\int",
    "⋃": "\\bigcup",
    "⋂": "\\bigcap",
}

# OMML omits m:chr for integrals, it is the default n-ary operator
DEFAULT_NARY_CHAR = "∫"

ROW_SEPARATOR = " \\\\ "

KNOWN_FUNCTIONS = frozenset(
    "sin cos tan cot sec csc arcsin arccos arctan sinh cosh tanh "
    "log ln lg exp lim max min det gcd".split()
)

DELIMITER_TO_LATEX = {
    "(": "(",
    ")": ")",
    "[": "[",
    "]": "]",
    "{": "\\{",
    "}": "\\}",
    "|": "|",
    "‖": "\\|",
    "⟨": "\\langle",
    "⟩": "\\rangle",
    "⌊": "\\lfloor",
    "⌋": "\\rfloor",
    "⌈": "\\lceil",
    "⌉": "\\rceil",
}


def local_name(node: Element) -> str:
    tag = node.tag
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def get_child(node: Element | None, name: str) -> Element | None:
    """First direct child with the given local name."""
    if node is None:
        return None
    for child in node:
        if local_name(child) == name:
            return child
    return None


def get_attr(node: Element | None, name: str) -> str:
    """Attribute value looked up by local name, ignoring the namespace."""
    if node is None:
        return ""
    for key, value in node.attrib.items():
        if key.rsplit("}", 1)[-1] == name:
            return value
    return ""


def _property_char(node: Element, props_tag: str, char_tag: str = "chr") -> str:
    return get_attr(get_child(get_child(node, props_tag), char_tag), "val")


def _children(node: Element) -> str:
    return "".join(_render(child) for child in node)


def _part(node: Element, name: str) -> str:
    child = get_child(node, name)
    return _render(child) if child is not None else ""


def _delimiter(char_node: Element | None, default: str) -> str:
    if char_node is None:
        return default
    char = get_attr(char_node, "val")
    if not char:
        # An explicit empty value hides the delimiter
        return ""
    return DELIMITER_TO_LATEX.get(char, char)


def _render(node: Element | None) -> str:
    if node is None:
        return ""
    tag = local_name(node)
    if not tag or tag.endswith("Pr") or tag in IGNORED_TAGS:
        return ""

    if tag in CONTAINER_TAGS:
        return _children(node)

    if tag == "t":
        return node.text or ""

    if tag == "f":
        return f"\\frac{{{_part(node, 'num')}}}{{{_part(node, 'den')}}}"

    if tag == "sSup":
        return f"{{{_part(node, 'e')}}}^{{{_part(node, 'sup')}}}"

    if tag == "sSub":
        return f"{{{_part(node, 'e')}}}_{{{_part(node, 'sub')}}}"

    if tag == "sSubSup":
        return (
            f"{{{_part(node, 'e')}}}_{{{_part(node, 'sub')}}}^{{{_part(node, 'sup')}}}"
        )

    if tag == "rad":
        degree = _part(node, "deg")
        base = _part(node, "e")
        return f"\\sqrt[{degree}]{{{base}}}" if degree else f"\\sqrt{{{base}}}"

    if tag == "m":
        rows = []
        for row in node:
            if local_name(row) != "mr":
                continue
            cells = [_render(cell) for cell in row if local_name(cell) == "e"]
            rows.append(" & ".join(cells))
        return "\\begin{matrix} " + ROW_SEPARATOR.join(rows) + " \\end{matrix}"

    if tag == "acc":
        accent = ACCENT_TO_LATEX.get(_property_char(node, "accPr"), "\\hat")
        return f"{accent}{{{_part(node, 'e')}}}"

    if tag == "nary":
        char = _property_char(node, "naryPr") or DEFAULT_NARY_CHAR
        operator = NARY_TO_LATEX.get(char, char)
        sub = _part(node, "sub")
        sup = _part(node, "sup")
        body = _part(node, "e")
        return f"{operator}_{{{sub}}}^{{{sup}}} {body}"

    if tag == "d":
        props = get_child(node, "dPr")
        left = _delimiter(get_child(props, "begChr"), "(")
        right = _delimiter(get_child(props, "endChr"), ")")
        separator = get_attr(get_child(props, "sepChr"), "val") or ", "
        items = [_render(child) for child in node if local_name(child) == "e"]
        return f"{left}{separator.join(items)}{right}"

    if tag == "func":
        name = _part(node, "fName").strip()
        body = _part(node, "e")
        if name in KNOWN_FUNCTIONS:
            return f"\\{name}{{{body}}}"
        return f"\\operatorname{{{name}}}{{{body}}}"

    if tag == "limLow":
        return f"{_part(node, 'e')}_{{{_part(node, 'lim')}}}"

    if tag == "limUpp":
        return f"{_part(node, 'e')}^{{{_part(node, 'lim')}}}"

    if tag == "bar":
        position = get_attr(get_child(get_child(node, "barPr"), "pos"), "val")
        macro = "\\underline" if position == "bot" else "\\overline"
        return f"{macro}{{{_part(node, 'e')}}}"

    if tag == "eqArr":
        rows = [_render(child) for child in node if local_name(child) == "e"]
        return "\\begin{aligned} " + ROW_SEPARATOR.join(rows) + " \\end{aligned}"

    return _children(node)


def omml_to_latex(node: Element | None) -> str:
    """
    Convert an OMML element (typically m:oMath or m:oMathPara) to LaTeX.

    Returns an empty string for missing or malformed input instead of raising.
    """
    try:
        return _render(node).strip()
    except Exception as exc:  # RecursionError, odd attribute types, ...
        logger.warning("Failed to translate math markup: %s", exc)
        return ""
