"""Deterministic math answer comparison.

check_equivalence() returns True / False when it can decide from the text
alone (normalized match, numeric match within tolerance, solution sets),
and None when the answers need a smarter judge.
"""

import math
import re
from typing import Optional

NUMERIC_TOLERANCE = 0.0001

_LATEX_REPLACEMENTS = [
    (re.compile(r"\\d?frac\{([^{}]+)\}\{([^{}]+)\}"), r"(\1)/(\2)"),
    (re.compile(r"\\sqrt\{([^{}]+)\}"), r"sqrt(\1)"),
    (re.compile(r"\\(cdot|times)"), "*"),
    (re.compile(r"\\div"), "/"),
    (re.compile(r"\\pm"), "+-"),
    (re.compile(r"\\(left|right)"), ""),
    (re.compile(r"\\[a-z]+"), ""),
]

_UNICODE = str.maketrans({"−": "-", "×": "*", "÷": "/", "±": "+-", "·": "*"})

_FRACTION_RE = re.compile(r"^\(?(-?\d+(?:\.\d+)?)\)?/\(?(-?\d+(?:\.\d+)?)\)?$")
_SQRT_RE = re.compile(r"^(?:(\d+(?:\.\d+)?)\*?)?(?:sqrt\((\d+(?:\.\d+)?)\)|√(\d+(?:\.\d+)?))$")
_ASSIGNMENT_RE = re.compile(r"^[a-z]=(.+)$")
_SET_SPLIT_RE = re.compile(r"\s+(?:or|and)\s+|;|,\s+")


def normalize(expr: str) -> str:
    """Lowercase, strip LaTeX markup and whitespace, unify operators."""
    if not expr:
        return ""
    text = expr.strip().lower().replace("$", "")
    for pattern, replacement in _LATEX_REPLACEMENTS:
        text = pattern.sub(replacement, text)
    text = text.translate(_UNICODE)
    text = text.replace("{", "").replace("}", "").replace("^", "**")
    return re.sub(r"\s+", "", text)


def parse_number(expr: str) -> Optional[float]:
    """Parse plain numbers, decimal commas, fractions and simple radicals."""
    text = normalize(expr)
    match = _ASSIGNMENT_RE.match(text)
    if match:
        text = match.group(1)
    if not text:
        return None
    if re.fullmatch(r"-?\d+,\d+", text):
        text = text.replace(",", ".")

    try:
        value = float(text)
        return value if math.isfinite(value) else None
    except ValueError:
        pass

    match = _FRACTION_RE.match(text)
    if match:
        den = float(match.group(2))
        if den == 0:
            return None
        return float(match.group(1)) / den

    negative = text.startswith("-")
    body = text[1:] if negative else text
    match = _SQRT_RE.match(body)
    if match:
        coeff = float(match.group(1)) if match.group(1) else 1.0
        radicand = float(match.group(2) or match.group(3))
        value = coeff * math.sqrt(radicand)
        return -value if negative else value

    return None


def _solution_set(expr: str) -> list[str]:
    text = expr.lower().replace("\\{", "{").replace("\\}", "}").replace("$", "").strip().strip("{}")
    parts = []
    for part in _SET_SPLIT_RE.split(text):
        part = normalize(part)
        if not part:
            continue
        match = _ASSIGNMENT_RE.match(part)
        parts.append(match.group(1) if match else part)
    return parts


def _values_match(a: str, b: str) -> bool:
    if a == b:
        return True
    na, nb = parse_number(a), parse_number(b)
    return na is not None and nb is not None and abs(na - nb) < NUMERIC_TOLERANCE


def check_equivalence(student_answer: str, correct_answer: str) -> Optional[bool]:
    """True / False when decidable from the text alone, otherwise None."""
    if not student_answer or not student_answer.strip():
        return False

    a, b = normalize(student_answer), normalize(correct_answer)
    if a == b:
        return True

    na, nb = parse_number(student_answer), parse_number(correct_answer)
    if na is not None and nb is not None:
        return abs(na - nb) < NUMERIC_TOLERANCE

    set_a, set_b = _solution_set(student_answer), _solution_set(correct_answer)
    if len(set_b) > 1 and all(parse_number(v) is not None for v in set_a + set_b):
        if len(set_a) != len(set_b):
            return False
        remaining = list(set_b)
        for value in set_a:
            hit = next((other for other in remaining if _values_match(value, other)), None)
            if hit is None:
                return False
            remaining.remove(hit)
        return True

    return None
