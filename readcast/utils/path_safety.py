"""Path helpers for package-internal references.

EPUB hrefs are percent-encoded and relative to the document that contains
them. Everything downstream wants plain, normalized paths relative to a
known base, with forward slashes.
"""
import os
import logging
from urllib.parse import unquote

logger = logging.getLogger(__name__)


def decode_href(href):
    """Percent-decode an href and drop any #fragment."""
    if not href:
        return ''
    return unquote(href.split('#', 1)[0])


def split_fragment(src):
    """Split 'chapter.xhtml#p12' into ('chapter.xhtml', 'p12'); fragment may be None."""
    if '#' in src:
        path, fragment = src.split('#', 1)
        return path, fragment or None
    return src, None


def resolve_href(base_dir, href):
    """Absolute, normalized path of ``href`` as written inside a document in ``base_dir``."""
    return os.path.normpath(os.path.join(base_dir, decode_href(href)))


def relative_to(path, base_dir):
    """``path`` relative to ``base_dir`` with POSIX separators.

    Both arguments are normalized first, so '..' segments collapse exactly
    once. The result may climb out of ``base_dir`` with '../' when ``path``
    really does live outside it.
    """
    rel = os.path.relpath(os.path.normpath(path), os.path.normpath(base_dir))
    return rel.replace(os.sep, '/')


def is_hidden(name):
    """Dot-prefixed entries (sidecars, OS metadata) are never scanned."""
    return name.startswith('.')


__all__ = ['decode_href', 'split_fragment', 'resolve_href', 'relative_to', 'is_hidden']
