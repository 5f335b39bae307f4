"""Markdown link extraction and rewriting."""

from kbkit.markdown.links import LinkKind, LinkReference, LinkStyle, LinkSyntax
from kbkit.markdown.processor import MarkdownLinkProcessor

__all__ = ["LinkKind", "LinkReference", "LinkStyle", "LinkSyntax", "MarkdownLinkProcessor"]
