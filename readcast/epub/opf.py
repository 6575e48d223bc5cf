"""EPUB package document parsing: container.xml -> OPF manifest, spine, metadata.

Elements are matched by local name so both namespaced and bare OPF files
parse the same way.
"""

import logging
import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from readcast.errors import PackageError
from readcast.utils.path_safety import decode_href, resolve_href

logger = logging.getLogger(__name__)

CONTAINER_PATH = os.path.join('META-INF', 'container.xml')
OPF_NS = "http://www.idpf.org/2007/opf"


def _local(tag) -> str:
    """'{ns}item' -> 'item'."""
    if not isinstance(tag, str):
        return ''
    return tag.rsplit('}', 1)[-1]


def _children(element, name):
    return [child for child in element if _local(child.tag) == name]


def _first_child(element, name):
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _attr(element, name) -> Optional[str]:
    """Attribute by local name, ignoring any namespace prefix."""
    if name in element.attrib:
        return element.attrib[name]
    for key, value in element.attrib.items():
        if _local(key) == name:
            return value
    return None


def _text(element) -> Optional[str]:
    if element is None:
        return None
    text = ''.join(element.itertext()).strip()
    return text or None


@dataclass
class ManifestItem:
    id: str
    href: str
    media_type: str = ''
    media_overlay: Optional[str] = None
    properties: List[str] = field(default_factory=list)


@dataclass
class SpineRef:
    idref: str
    linear: bool = True


@dataclass
class PackageMetadata:
    title: Optional[str] = None
    author: Optional[str] = None
    narrator: Optional[str] = None
    isbn: Optional[str] = None
    language: Optional[str] = None


@dataclass
class PackageIndex:
    """Everything the SMIL parser and playlist builder need from the OPF."""
    root_dir: str
    opf_path: str
    items: List[ManifestItem] = field(default_factory=list)
    spine: List[SpineRef] = field(default_factory=list)
    metadata: PackageMetadata = field(default_factory=PackageMetadata)

    def __post_init__(self):
        self._by_id: Dict[str, ManifestItem] = {}
        for item in self.items:
            # First declaration wins on duplicate ids
            self._by_id.setdefault(item.id, item)

    @property
    def opf_dir(self) -> str:
        return os.path.dirname(self.opf_path)

    def item(self, item_id) -> Optional[ManifestItem]:
        return self._by_id.get(item_id)

    def resolve(self, item: ManifestItem) -> str:
        """Absolute path of a manifest item (hrefs are OPF-relative and percent-encoded)."""
        return resolve_href(self.opf_dir, item.href)

    def audio_items(self) -> List[ManifestItem]:
        return [i for i in self.items if i.media_type.startswith('audio/')]


def _parse_xml(path, what):
    try:
        return ET.parse(path).getroot()
    except FileNotFoundError as e:
        raise PackageError(f"Missing {what}: {path}") from e
    except (ET.ParseError, OSError) as e:
        raise PackageError(f"Unreadable {what} {path}: {e}") from e


def find_opf_path(root_dir) -> str:
    """Absolute path of the OPF named by META-INF/container.xml."""
    container = _parse_xml(os.path.join(root_dir, CONTAINER_PATH), 'container.xml')
    rootfiles = _first_child(container, 'rootfiles')
    if rootfiles is not None:
        for rootfile in _children(rootfiles, 'rootfile'):
            full_path = _attr(rootfile, 'full-path')
            if full_path:
                return os.path.normpath(os.path.join(root_dir, decode_href(full_path)))
    raise PackageError(f"Cannot find OPF file under {root_dir}")


def _parse_manifest(package) -> List[ManifestItem]:
    manifest = _first_child(package, 'manifest')
    if manifest is None:
        raise PackageError("OPF has no <manifest>")

    items = []
    for element in _children(manifest, 'item'):
        item_id = _attr(element, 'id')
        href = _attr(element, 'href')
        if not item_id or not href:
            logger.warning(f"Skipping manifest item without id/href: {element.attrib}")
            continue
        items.append(ManifestItem(
            id=item_id,
            href=href,
            media_type=_attr(element, 'media-type') or '',
            media_overlay=_attr(element, 'media-overlay') or None,
            properties=(_attr(element, 'properties') or '').split(),
        ))
    return items


def _parse_spine(package) -> List[SpineRef]:
    spine = _first_child(package, 'spine')
    if spine is None:
        logger.warning("OPF has no <spine>, reading order is empty")
        return []

    refs = []
    for element in _children(spine, 'itemref'):
        idref = _attr(element, 'idref')
        if not idref:
            logger.warning("Skipping spine itemref without idref")
            continue
        refs.append(SpineRef(idref=idref, linear=(_attr(element, 'linear') or 'yes') != 'no'))
    return refs


def _parse_metadata(package) -> PackageMetadata:
    metadata = _first_child(package, 'metadata')
    meta = PackageMetadata()
    if metadata is None:
        return meta

    # EPUB3 roles: <meta refines="#c1" property="role">nrt</meta>
    refined_roles = {}
    for element in _children(metadata, 'meta'):
        if _attr(element, 'property') == 'role' and _attr(element, 'refines'):
            refined_roles[_attr(element, 'refines').lstrip('#')] = _text(element)

    def role_of(element):
        return _attr(element, 'role') or refined_roles.get(_attr(element, 'id') or '')

    meta.title = _text(_first_child(metadata, 'title'))
    meta.language = _text(_first_child(metadata, 'language'))

    creators = _children(metadata, 'creator')
    authors = [c for c in creators if role_of(c) != 'nrt']
    if authors:
        meta.author = _text(authors[0])

    for element in _children(metadata, 'contributor') + creators:
        if role_of(element) == 'nrt':
            meta.narrator = _text(element)
            break

    identifiers = _children(metadata, 'identifier')
    unique_id = _attr(package, 'unique-identifier')
    preferred = [i for i in identifiers if unique_id and _attr(i, 'id') == unique_id]
    if preferred or identifiers:
        meta.isbn = _text((preferred or identifiers)[0])

    return meta


def parse_opf(opf_path, root_dir) -> PackageIndex:
    """Parse an OPF into a PackageIndex.

    Raises:
        PackageError: the OPF is missing, malformed or has no manifest
    """
    package = _parse_xml(opf_path, 'OPF')
    if _local(package.tag) != 'package':
        raise PackageError(f"Root element of {opf_path} is not <package>")

    index = PackageIndex(
        root_dir=os.path.normpath(str(root_dir)),
        opf_path=os.path.normpath(str(opf_path)),
        items=_parse_manifest(package),
        spine=_parse_spine(package),
        metadata=_parse_metadata(package),
    )
    logger.debug(f"Parsed OPF {opf_path}: {len(index.items)} items, {len(index.spine)} spine refs")
    return index


def load_package(root_dir) -> PackageIndex:
    """Locate and parse the OPF of an extracted EPUB."""
    return parse_opf(find_opf_path(root_dir), root_dir)


def find_cover_path(index: PackageIndex) -> Optional[str]:
    """Absolute path of the cover image, if the manifest declares one that exists."""
    for item in index.items:
        if not item.media_type.startswith('image/'):
            continue
        is_cover = ('cover-image' in item.properties
                    or 'cover' in item.id.lower()
                    or 'cover' in item.href.lower())
        if is_cover:
            cover_path = index.resolve(item)
            if os.path.isfile(cover_path):
                return cover_path
    return None


__all__ = [
    'CONTAINER_PATH', 'ManifestItem', 'SpineRef', 'PackageMetadata', 'PackageIndex',
    'find_opf_path', 'parse_opf', 'load_package', 'find_cover_path',
]
