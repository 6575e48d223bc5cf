"""Media overlay (SMIL) parsing.

Walks the spine in reading order, follows each content document's
media-overlay reference to its SMIL file, and flattens every <par> into a
SyncPar. Paths inside a SMIL file are relative to that file; they are
rewritten so that text sources are relative to the OPF directory (the
reader navigates by OPF-relative hrefs) and audio sources are relative to
the package root (audio is served from the extracted tree).
"""

import json
import logging
import os
import xml.etree.ElementTree as ET
from typing import List

from readcast.epub.opf import PackageIndex, _local, _attr
from readcast.errors import PackageError
from readcast.models.book import SyncPar
from readcast.utils.path_safety import decode_href, split_fragment, relative_to
from readcast.utils.smil_time import smil_time_to_seconds

logger = logging.getLogger(__name__)


def collect_pars(element) -> list:
    """All <par> elements under a <body>/<seq>, in document order."""
    pars = []
    for child in element:
        name = _local(child.tag)
        if name == 'par':
            pars.append(child)
        elif name == 'seq':
            pars.extend(collect_pars(child))
    return pars


def parse_smil_content(content) -> List[SyncPar]:
    """Parse SMIL XML (str or bytes) into pars with paths exactly as written.

    Pars without a <text> or <audio> child are dropped with a warning.

    Raises:
        PackageError: the document is not well-formed or has no <body>
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise PackageError(f"Invalid SMIL file: {e}") from e

    body = next((child for child in root if _local(child.tag) == 'body'), None)
    if body is None:
        raise PackageError("Invalid SMIL file: missing <body> element")

    pars = []
    for par in collect_pars(body):
        text = next((c for c in par if _local(c.tag) == 'text'), None)
        audio = next((c for c in par if _local(c.tag) == 'audio'), None)
        text_src = _attr(text, 'src') if text is not None else None
        audio_src = _attr(audio, 'src') if audio is not None else None
        if not text_src:
            logger.warning(f"No valid <text> element in <par id={_attr(par, 'id')}>")
            continue
        if not audio_src:
            logger.warning(f"No valid <audio> clip element in <par id={_attr(par, 'id')}>")
            continue

        text_path, text_id = split_fragment(text_src)
        pars.append(SyncPar(
            id=_attr(par, 'id'),
            text_src=text_path,
            text_id=text_id,
            audio_src=audio_src,
            clip_begin=smil_time_to_seconds(_attr(audio, 'clipBegin') or _attr(audio, 'clip-begin')),
            clip_end=smil_time_to_seconds(_attr(audio, 'clipEnd') or _attr(audio, 'clip-end')),
        ))
    return pars


def rebase_par(par: SyncPar, smil_dir, opf_dir, root_dir) -> SyncPar:
    """Rewrite a par's paths from SMIL-relative to OPF-relative (text) and root-relative (audio)."""
    text_abs = os.path.normpath(os.path.join(smil_dir, decode_href(par.text_src)))
    audio_abs = os.path.normpath(os.path.join(smil_dir, decode_href(par.audio_src)))
    par.text_src = relative_to(text_abs, opf_dir)
    par.audio_src = relative_to(audio_abs, root_dir)
    return par


def parse_smil_file(smil_path, index: PackageIndex) -> List[SyncPar]:
    """Parse one SMIL file and rebase its pars against the package."""
    try:
        with open(smil_path, 'rb') as f:
            content = f.read()
    except OSError as e:
        raise PackageError(f"Cannot read SMIL file {smil_path}: {e}") from e

    smil_dir = os.path.dirname(smil_path)
    pars = [rebase_par(par, smil_dir, index.opf_dir, index.root_dir) for par in parse_smil_content(content)]
    logger.debug(f"Parse SMIL file {smil_path} - Got {len(pars)} pars")
    return pars


def parse_sync_pars(index: PackageIndex) -> List[SyncPar]:
    """Flattened pars for the whole book, in spine order."""
    pars: List[SyncPar] = []
    parsed_overlays = set()

    for ref in index.spine:
        spine_item = index.item(ref.idref)
        if spine_item is None:
            logger.debug(f"Spine idref {ref.idref} not in manifest")
            continue
        if not spine_item.media_overlay:
            continue

        smil_item = index.item(spine_item.media_overlay)
        if smil_item is None:
            logger.warning(f"media-overlay {spine_item.media_overlay} of {spine_item.id} not in manifest")
            continue
        if smil_item.id in parsed_overlays:
            continue
        parsed_overlays.add(smil_item.id)

        smil_path = index.resolve(smil_item)
        if not os.path.isfile(smil_path):
            logger.warning(f"Parse SMIL file {smil_path} failed - no such file")
            continue

        pars.extend(parse_smil_file(smil_path, index))

    return pars


def write_merged_smil(pars: List[SyncPar], path) -> None:
    """Persist the flattened pars as one JSON array."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump([par.to_dict() for par in pars], f, indent=2)


def read_merged_smil(path) -> List[SyncPar]:
    with open(path, 'r', encoding='utf-8') as f:
        return [SyncPar.from_dict(item) for item in json.load(f)]


__all__ = [
    'collect_pars', 'parse_smil_content', 'rebase_par', 'parse_smil_file',
    'parse_sync_pars', 'write_merged_smil', 'read_merged_smil',
]
