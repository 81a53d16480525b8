"""Converters package for OneNote page HTML to Markdown conversion."""

from .content_transformer import ContentTransformer, TransformContext, TRANSFORM_STAGES
from .markdown_converter import MarkdownConverter
from .math_converter import MathMLConverter
from .multipart import split_multipart

__all__ = [
    'ContentTransformer',
    'MarkdownConverter',
    'MathMLConverter',
    'TRANSFORM_STAGES',
    'TransformContext',
    'split_multipart'
]
