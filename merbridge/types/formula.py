"""
merbridge.types.formula

Structured lme4 model formulas.

A [`Formula`][merbridge.types.formula.Formula] is parsed once from text and
rendered back through a single canonical printer, so the text that reaches R
is always produced the same way. Parsing the canonical text gives back an
equal object.

```python
from merbridge import formula

f = formula("reaction ~ days + (days | subject)")
str(f)          # 'reaction ~ 1 + days + (1 + days | subject)'
f.groups        # ('subject',)
```
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple, Union

from .errors import FormulaError

__all__ = ["Formula", "RandomTerm", "formula"]


_TOKEN = re.compile(
    r"""
    (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?L?)
    |(?P<name>`[^`]+`|(?:[A-Za-z]|\.(?![0-9]))[A-Za-z0-9._]*)
    |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<op>%[^%\s]*%)
    |(?P<other>\S)
    """,
    re.VERBOSE,
)

_OPEN = "([{"
_CLOSE = ")]}"

# Names that never refer to data columns
_R_CONSTANTS = frozenset({"TRUE", "FALSE", "NULL", "NA", "Inf", "NaN", "."})

# Mantissa of a numeric literal with an exponent, e.g. "1e" in "1e-5"
_EXPONENT = re.compile(r"(?:\d+\.?\d*|\.\d+)[eE]")


def _tokens(text: str) -> Iterator[Tuple[str, str]]:
    for m in _TOKEN.finditer(text):
        kind = m.lastgroup
        assert kind is not None
        yield kind, m.group(kind)


def _squeeze(text: str) -> str:
    """Drop insignificant whitespace: ``"I(x ^ 2)"`` -> ``"I(x^2)"``."""
    return "".join(tok for _, tok in _tokens(text))


def _scan(text: str) -> Iterator[Tuple[int, str, int]]:
    """Yield ``(index, char, depth)`` for characters outside string literals."""
    depth = 0
    quote: Optional[str] = None
    escaped = False
    for i, ch in enumerate(text):
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "\"'`":
            quote = ch
            continue
        if ch in _OPEN:
            depth += 1
        elif ch in _CLOSE:
            depth -= 1
            if depth < 0:
                raise FormulaError("unbalanced closing bracket", text)
        yield i, ch, depth
    if quote is not None:
        raise FormulaError("unterminated quote", text)
    if depth != 0:
        raise FormulaError("unbalanced brackets", text)


def _is_exponent_sign(text: str, i: int) -> bool:
    j = i
    while j > 0 and (text[j - 1].isalnum() or text[j - 1] in "._"):
        j -= 1
    return _EXPONENT.fullmatch(text[j:i]) is not None


def _split_top(text: str, chars: str) -> List[Tuple[str, str]]:
    """
    Split ``text`` at depth-0 occurrences of any character in ``chars``.

    Returns ``(separator, piece)`` pairs; the first separator is ``""``.
    Exponent signs inside numeric literals (``1e-5``) are not separators.
    """
    out: List[Tuple[str, str]] = []
    sep = ""
    start = 0
    for i, ch, depth in _scan(text):
        if depth != 0 or ch not in chars:
            continue
        if ch in "+-" and _is_exponent_sign(text, i):
            continue
        out.append((sep, text[start:i].strip()))
        sep = ch
        start = i + 1
    out.append((sep, text[start:].strip()))
    return out


def _enclosed(text: str) -> bool:
    """True when ``text`` is one parenthesised block, e.g. ``(1 | g)``."""
    if not text.startswith("(") or not text.endswith(")"):
        return False
    for i, ch, depth in _scan(text):
        if depth == 0 and i < len(text) - 1:
            return False
    return True


def _terms(text: str, whole: str) -> Tuple[Optional[bool], List[str], List["RandomTerm"]]:
    """
    Parse a sum of terms.

    Returns ``(intercept, fixed_terms, random_terms)`` where ``intercept`` is
    ``None`` if the text does not mention it explicitly.
    """
    intercept: Optional[bool] = None
    fixed: List[str] = []
    random: List[RandomTerm] = []

    pieces = _split_top(text, "+-")
    for pos, (sign, piece) in enumerate(pieces):
        if not piece:
            # a leading unary minus leaves an empty first piece
            if pos == 0 and len(pieces) > 1 and pieces[1][0] == "-":
                continue
            raise FormulaError("empty term", whole)

        squeezed = _squeeze(piece)
        if sign == "-":
            if squeezed == "1":
                intercept = False
                continue
            if squeezed == "0":
                intercept = True
                continue
            raise FormulaError(f"removing term {squeezed!r} is not supported", whole)

        if squeezed in ("0", "-1"):
            intercept = False
            continue
        if squeezed == "1":
            intercept = True
            continue

        if _enclosed(piece):
            inner = piece[1:-1]
            if any(ch == "|" for _, ch, depth in _scan(inner) if depth == 0):
                random.append(RandomTerm._parse(inner, whole))
                continue

        if any(ch == "~" for _, ch, depth in _scan(piece) if depth == 0):
            raise FormulaError("unexpected '~'", whole)

        if squeezed not in fixed:
            fixed.append(squeezed)

    return intercept, fixed, random


def _render(intercept: bool, terms: Tuple[str, ...]) -> str:
    return " + ".join(["1" if intercept else "0", *terms])


def _variables(text: str) -> Iterator[str]:
    toks = list(_tokens(text))
    for i, (kind, tok) in enumerate(toks):
        if kind != "name":
            continue
        nxt = toks[i + 1][1] if i + 1 < len(toks) else ""
        after = toks[i + 2][1] if i + 2 < len(toks) else ""
        if nxt == "(":
            continue
        if nxt == "=" and after != "=":
            continue
        if tok.startswith("`"):
            tok = tok[1:-1]
        if tok in _R_CONSTANTS:
            continue
        yield tok


@dataclass(frozen=True)
class RandomTerm:
    """
    One ``(expr | group)`` block.

    Attributes
    ----------
    group : str
        Grouping factor text, e.g. ``"subject"``, ``"site/plot"``.
    terms : tuple of str
        Per-group slope terms, in order.
    intercept : bool
        Whether each group gets its own intercept.
    correlated : bool
        ``True`` for ``|``, ``False`` for the uncorrelated ``||`` form.
    """
    group: str
    terms: Tuple[str, ...] = ()
    intercept: bool = True
    correlated: bool = True

    def __post_init__(self):
        if not self.group:
            raise FormulaError("random-effect term without a grouping factor")
        if not self.intercept and not self.terms:
            raise FormulaError(f"random-effect term for {self.group!r} has no effects")

    @classmethod
    def _parse(cls, inner: str, whole: str) -> "RandomTerm":
        bars = [i for i, ch, depth in _scan(inner) if depth == 0 and ch == "|"]
        double = len(bars) == 2 and bars[1] == bars[0] + 1
        if len(bars) != 1 and not double:
            raise FormulaError("random-effect term with more than one '|'", whole)

        lhs = inner[: bars[0]].strip()
        group = _squeeze(inner[bars[-1] + 1:])
        if not lhs:
            raise FormulaError("random-effect term without effects", whole)
        if not group:
            raise FormulaError("random-effect term without a grouping factor", whole)

        intercept, terms, nested = _terms(lhs, whole)
        if nested:
            raise FormulaError("nested random-effect terms", whole)
        return cls(
            group=group,
            terms=tuple(terms),
            intercept=True if intercept is None else intercept,
            correlated=not double,
        )

    def __str__(self) -> str:
        bar = "|" if self.correlated else "||"
        return f"({_render(self.intercept, self.terms)} {bar} {self.group})"

    def __repr__(self) -> str:
        return f"RandomTerm({str(self)!r})"


@dataclass(frozen=True)
class Formula:
    """
    A linear mixed-model formula.

    Attributes
    ----------
    response : str
        Left-hand side, e.g. ``"y"`` or ``"log(y)"``.
    fixed : tuple of str
        Fixed-effect terms, in order, without the intercept.
    random : tuple of RandomTerm
        Random-effect blocks, in order.
    intercept : bool
        Whether the fixed part has an intercept.

    Notes
    -----
    Term text is whitespace-normalised on parse, so ``"a : b"`` and ``"a:b"``
    describe the same term. ``str()`` always writes the intercept explicitly.
    """
    response: str
    fixed: Tuple[str, ...] = ()
    random: Tuple[RandomTerm, ...] = ()
    intercept: bool = True
    _text: Optional[str] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if not self.response:
            raise FormulaError("formula has no response")

    @classmethod
    def parse(cls, text: str) -> "Formula":
        """
        Parse lme4 formula text.

        Parameters
        ----------
        text : str
            e.g. ``"y ~ x + (1 | g)"``

        Returns
        -------
        Formula

        Raises
        ------
        FormulaError
            If the text is not a valid mixed-model formula.
        """
        if not isinstance(text, str):
            raise FormulaError(f"formula must be a string, got {type(text).__name__}")

        if any(ch == ";" for _, ch, _ in _scan(text)):
            raise FormulaError("';' is not allowed in a formula", text)

        tildes = [i for i, ch, depth in _scan(text) if depth == 0 and ch == "~"]
        if len(tildes) != 1:
            raise FormulaError("formula must contain exactly one '~'", text)

        lhs = text[: tildes[0]].strip()
        rhs = text[tildes[0] + 1:].strip()
        if not lhs:
            raise FormulaError("formula has no response", text)
        if not rhs:
            raise FormulaError("formula has no right-hand side", text)

        bars = [i for i, ch, depth in _scan(rhs) if depth == 0 and ch == "|"]
        if bars:
            left = " ".join(rhs[: bars[0]].split()) or "1"
            group = " ".join(rhs[bars[-1] + 1:].split()) or "group"
            raise FormulaError(
                "random-effect terms must be wrapped in parentheses; write "
                f"'{_squeeze(lhs)} ~ {left} + (1 | {group})' for these fixed effects with a "
                f"per-group intercept, or '{_squeeze(lhs)} ~ ({left} | {group})' for "
                "per-group effects",
                text,
            )

        intercept, fixed, random = _terms(rhs, text)
        return cls(
            response=_squeeze(lhs),
            fixed=tuple(fixed),
            random=tuple(random),
            intercept=True if intercept is None else intercept,
            _text=text,
        )

    def __str__(self) -> str:
        rhs = _render(self.intercept, self.fixed)
        if self.random:
            rhs = " + ".join([rhs, *(str(r) for r in self.random)])
        return f"{self.response} ~ {rhs}"

    def __repr__(self) -> str:
        return f"Formula({str(self)!r})"

    def to_r(self) -> str:
        """Canonical R source text of this formula."""
        return str(self)

    @property
    def text(self) -> str:
        """The text this formula was parsed from, or its canonical form."""
        return self._text if self._text is not None else str(self)

    @property
    def fixed_terms(self) -> Tuple[str, ...]:
        """Fixed-effect terms including the intercept as ``"1"`` or ``"0"``."""
        return ("1" if self.intercept else "0", *self.fixed)

    @property
    def random_terms(self) -> Tuple[RandomTerm, ...]:
        return self.random

    @property
    def groups(self) -> Tuple[str, ...]:
        """Grouping factors of the random-effect blocks, in order."""
        return tuple(r.group for r in self.random)

    def variables(self) -> Tuple[str, ...]:
        """
        Data columns referenced by the formula, in order of appearance.

        Function names and keyword argument names are skipped, so
        ``"log(y) ~ poly(x, degree = 2) + (1 | g)"`` gives
        ``("y", "x", "g")``.
        """
        seen: List[str] = []
        for name in _variables(str(self)):
            if name not in seen:
                seen.append(name)
        return tuple(seen)


def formula(f: Union[Formula, str]) -> Formula:
    """
    Coerce ``f`` to a [`Formula`][merbridge.types.formula.Formula].

    Parameters
    ----------
    f : Formula or str
        A formula, or lme4 formula text.

    Returns
    -------
    Formula
    """
    if isinstance(f, Formula):
        return f
    return Formula.parse(f)
