"""MathML to LaTeX conversion for equations embedded in OneNote pages."""

import logging
import re
from typing import List

from bs4 import BeautifulSoup, Comment, Tag

from fetchers.errors import TransformError
from .markdown_converter import MATH_ATTR, raw_markdown

logger = logging.getLogger('onenote_markdown_migrator.converters.math')

MATHML_COMMENT_PATTERN = re.compile(r'^\s*\[if mathML\]>(.*?)<!\[endif\]\s*$', re.DOTALL | re.IGNORECASE)
MATH_PLACEHOLDER = '[Equation could not be converted]'

SYMBOLS = {
    # Greek
    'α': r'\alpha', 'β': r'\beta', 'γ': r'\gamma', 'δ': r'\delta', 'ε': r'\epsilon',
    'ζ': r'\zeta', 'η': r'\eta', 'θ': r'\theta', 'ι': r'\iota', 'κ': r'\kappa',
    'λ': r'\lambda', 'μ': r'\mu', 'ν': r'\nu', 'ξ': r'\xi', 'π': r'\pi',
    'ρ': r'\rho', 'σ': r'\sigma', 'τ': r'\tau', 'υ': r'\upsilon', 'φ': r'\phi',
    'χ': r'\chi', 'ψ': r'\psi', 'ω': r'\omega',
    'Γ': r'\Gamma', 'Δ': r'\Delta', 'Θ': r'\Theta', 'Λ': r'\Lambda', 'Ξ': r'\Xi',
    'Π': r'\Pi', 'Σ': r'\Sigma', 'Φ': r'\Phi', 'Ψ': r'\Psi', 'Ω': r'\Omega',
    # Operators and relations
    '±': r'\pm', '∓': r'\mp', '×': r'\times', '÷': r'\div', '·': r'\cdot', '⋅': r'\cdot',
    '−': '-', '∗': '*', '≤': r'\leq', '≥': r'\geq', '≠': r'\neq', '≈': r'\approx',
    '≡': r'\equiv', '∝': r'\propto', '∼': r'\sim', '∞': r'\infty', '∂': r'\partial',
    '∇': r'\nabla', '∈': r'\in', '∉': r'\notin', '⊂': r'\subset', '⊆': r'\subseteq',
    '∪': r'\cup', '∩': r'\cap', '∅': r'\emptyset', '∀': r'\forall', '∃': r'\exists',
    '¬': r'\neg', '∧': r'\wedge', '∨': r'\vee', '→': r'\rightarrow', '←': r'\leftarrow',
    '↔': r'\leftrightarrow', '⇒': r'\Rightarrow', '⇔': r'\Leftrightarrow', '…': r'\ldots',
    '⋯': r'\cdots', '°': r'^\circ', '′': "'",
    # Large operators
    '∑': r'\sum', '∏': r'\prod', '∫': r'\int', '∬': r'\iint', '∮': r'\oint',
    # Characters special to LaTeX
    '{': r'\{', '}': r'\}', '%': r'\%', '#': r'\#', '&': r'\&', '_': r'\_', '$': r'\$',
    '\u2061': '', '\u2062': '', '\u2063': '',
}
LARGE_OPERATORS = {r'\sum', r'\prod', r'\int', r'\iint', r'\oint', r'\lim'}
FUNCTIONS = {'sin', 'cos', 'tan', 'cot', 'sec', 'csc', 'log', 'ln', 'exp', 'lim', 'max', 'min', 'det'}
ACCENTS = {
    '¯': r'\overline', '‾': r'\overline', '^': r'\hat', 'ˆ': r'\hat', '~': r'\tilde',
    '˜': r'\tilde', '→': r'\vec', '\u20d7': r'\vec', '˙': r'\dot', '¨': r'\ddot',
}


class MathConversionError(TransformError):
    """Raised when a MathML fragment cannot be converted to LaTeX."""
    pass


def _local_name(name) -> str:
    return (name or '').split(':')[-1].lower()


class MathMLConverter:
    """Recursive MathML (presentation markup) to LaTeX converter."""

    def convert(self, markup: str) -> str:
        """
        Convert a MathML fragment to a LaTeX expression (without delimiters).

        Raises:
            MathConversionError: For missing, empty or unsupported markup
        """
        soup = BeautifulSoup(markup, 'html.parser')
        math = soup.find(lambda tag: _local_name(tag.name) == 'math')
        if math is None:
            raise MathConversionError("No math element found")

        latex = re.sub(r'\s+', ' ', self._children(math)).strip()
        if not latex:
            raise MathConversionError("Empty math expression")
        return latex

    def _convert(self, element: Tag) -> str:
        name = _local_name(element.name).replace('-', '_')
        handler = getattr(self, f'_convert_{name}', None)
        if handler is None:
            raise MathConversionError(f"Unsupported MathML element <{element.name}>")
        return handler(element)

    @staticmethod
    def _args(element: Tag) -> List[Tag]:
        return [child for child in element.children if isinstance(child, Tag)]

    def _expect(self, element: Tag, count: int) -> List[str]:
        args = self._args(element)
        if len(args) != count:
            raise MathConversionError(
                f"<{element.name}> expects {count} arguments, got {len(args)}"
            )
        return [self._convert(arg) for arg in args]

    def _children(self, element: Tag) -> str:
        return ''.join(self._convert(child) for child in self._args(element))

    @staticmethod
    def _symbols(text: str) -> str:
        return ''.join(SYMBOLS.get(char, char) for char in text)

    # Containers

    def _convert_math(self, element: Tag) -> str:
        return self._children(element)

    _convert_mrow = _convert_math
    _convert_mstyle = _convert_math
    _convert_mpadded = _convert_math
    _convert_menclose = _convert_math

    def _convert_semantics(self, element: Tag) -> str:
        args = self._args(element)
        return self._convert(args[0]) if args else ''

    def _convert_annotation(self, element: Tag) -> str:
        return ''

    _convert_annotation_xml = _convert_annotation
    _convert_mphantom = _convert_annotation

    # Tokens

    def _convert_mi(self, element: Tag) -> str:
        text = element.get_text().strip()
        if text in FUNCTIONS:
            return f'\\{text} '
        if len(text) > 1 and not all(char in SYMBOLS for char in text):
            return f'\\mathrm{{{self._symbols(text)}}}'
        latex = self._symbols(text)
        return latex + ' ' if latex.startswith('\\') else latex

    def _convert_mn(self, element: Tag) -> str:
        return self._symbols(element.get_text().strip())

    def _convert_mo(self, element: Tag) -> str:
        text = element.get_text().strip()
        latex = self._symbols(text)
        if latex.startswith('\\') and latex[-1].isalpha():
            return latex + ' '
        return latex

    def _convert_mtext(self, element: Tag) -> str:
        text = element.get_text()
        return f'\\text{{{self._symbols(text)}}}' if text.strip() else ' '

    def _convert_mspace(self, element: Tag) -> str:
        return '\\ '

    # Layout

    def _convert_msup(self, element: Tag) -> str:
        base, sup = self._expect(element, 2)
        return f'{{{base}}}^{{{sup}}}'

    def _convert_msub(self, element: Tag) -> str:
        base, sub = self._expect(element, 2)
        return f'{{{base}}}_{{{sub}}}'

    def _convert_msubsup(self, element: Tag) -> str:
        base, sub, sup = self._expect(element, 3)
        return f'{{{base}}}_{{{sub}}}^{{{sup}}}'

    def _convert_mfrac(self, element: Tag) -> str:
        numerator, denominator = self._expect(element, 2)
        return f'\\frac{{{numerator}}}{{{denominator}}}'

    def _convert_msqrt(self, element: Tag) -> str:
        return f'\\sqrt{{{self._children(element)}}}'

    def _convert_mroot(self, element: Tag) -> str:
        base, index = self._expect(element, 2)
        return f'\\sqrt[{index}]{{{base}}}'

    def _convert_mfenced(self, element: Tag) -> str:
        opening = element.get('open', '(')
        closing = element.get('close', ')')
        separator = (element.get('separators', ',') or ',')[0]
        inner = separator.join(self._convert(arg) for arg in self._args(element))
        return f'\\left{self._fence(opening)}{inner}\\right{self._fence(closing)}'

    @staticmethod
    def _fence(char: str) -> str:
        if not char:
            return '.'
        return {'{': r'\{', '}': r'\}', '|': '|', '‖': r'\|'}.get(char, char)

    def _convert_mover(self, element: Tag) -> str:
        base, over = self._expect(element, 2)
        accent = ACCENTS.get(self._args(element)[1].get_text().strip())
        if accent:
            return f'{accent}{{{base}}}'
        if base.strip() in LARGE_OPERATORS:
            return f'{base.strip()}^{{{over}}}'
        return f'\\overset{{{over}}}{{{base}}}'

    def _convert_munder(self, element: Tag) -> str:
        base, under = self._expect(element, 2)
        if base.strip() in LARGE_OPERATORS:
            return f'{base.strip()}_{{{under}}}'
        return f'\\underset{{{under}}}{{{base}}}'

    def _convert_munderover(self, element: Tag) -> str:
        base, under, over = self._expect(element, 3)
        if base.strip() in LARGE_OPERATORS:
            return f'{base.strip()}_{{{under}}}^{{{over}}}'
        return f'\\underset{{{under}}}{{\\overset{{{over}}}{{{base}}}}}'

    def _convert_mtable(self, element: Tag) -> str:
        rows = []
        for row in self._args(element):
            cells = [self._children(cell) for cell in self._args(row)]
            rows.append(' & '.join(cells))
        return '\\begin{matrix}' + ' \\\\ '.join(rows) + '\\end{matrix}'


def convert_math(soup: BeautifulSoup, ctx) -> BeautifulSoup:
    """
    Replace MathML equations with inline $...$ LaTeX.

    Equations arrive either as math elements or inside [if mathML]
    conditional comments. An equation that cannot be converted is replaced
    by a placeholder text run and recorded as a warning.
    """
    converter = MathMLConverter()

    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        match = MATHML_COMMENT_PATTERN.match(comment)
        if match:
            comment.replace_with(_math_node(soup, converter, match.group(1), ctx))

    for math in soup.find_all(lambda tag: _local_name(tag.name) == 'math'):
        if math.find_parent(lambda tag: _local_name(tag.name) == 'math'):
            continue
        math.replace_with(_math_node(soup, converter, str(math), ctx))

    return soup


def _math_node(soup: BeautifulSoup, converter: MathMLConverter, markup: str, ctx):
    try:
        latex = converter.convert(markup)
    except MathConversionError as e:
        logger.warning(f"Could not convert equation on page '{ctx.page.title}': {e}")
        ctx.warnings.append(f"Equation could not be converted: {e}")
        return raw_markdown(soup, MATH_PLACEHOLDER)
    return raw_markdown(soup, f'${latex}$', **{MATH_ATTR: latex})
