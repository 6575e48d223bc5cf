"""Audio file discovery and probing."""
import os
import logging
from typing import Iterable, List, Optional

from readcast.models.book import AudioFileInfo

logger = logging.getLogger(__name__)

# File extension constants
AUDIO_EXTENSIONS = {'.mp3', '.m4a', '.m4b', '.aac', '.flac', '.ogg', '.opus', '.wav', '.wma'}
PACKAGE_EXTENSIONS = {'.epub'}


def _first_tag(tags, key):
    """First value of a tag as a string, or None."""
    if not tags or not hasattr(tags, 'get'):
        return None
    try:
        value = tags.get(key)
    except (KeyError, ValueError):
        return None
    if not value:
        return None
    if isinstance(value, list):
        value = value[0]
    return str(value)


def probe_audio_file(file_path) -> Optional[AudioFileInfo]:
    """Read duration, stream info and common tags from an audio file.

    Returns None when mutagen cannot recognise or read the file; callers
    decide whether that is worth logging louder.
    """
    try:
        from mutagen import File as MutagenFile

        audio = MutagenFile(file_path, easy=True)
        if audio is None:
            logger.debug(f"Unrecognised audio format: {file_path}")
            return None

        info = getattr(audio, 'info', None)
        duration = getattr(info, 'length', 0) or 0
        tags = audio.tags

        return AudioFileInfo(
            file_path=str(file_path),
            duration=float(duration),
            bitrate=getattr(info, 'bitrate', None),
            sample_rate=getattr(info, 'sample_rate', None),
            codec=getattr(info, 'codec', None) or type(audio).__name__,
            title=_first_tag(tags, 'title'),
            artist=_first_tag(tags, 'artist'),
            album=_first_tag(tags, 'album'),
            album_artist=_first_tag(tags, 'albumartist'),
            year=_first_tag(tags, 'date'),
        )
    except Exception as e:
        logger.debug(f"Could not read audio info from {file_path}: {e}")
        return None


def list_audio_files(folder_path, extensions: Iterable[str] = None) -> List[str]:
    """Audio files directly inside ``folder_path`` (no recursion), unsorted."""
    exts = {e.lower() for e in extensions} if extensions else AUDIO_EXTENSIONS
    found = []
    for name in os.listdir(folder_path):
        if name.startswith('.'):
            continue
        full = os.path.join(folder_path, name)
        if os.path.splitext(name)[1].lower() in exts and os.path.isfile(full):
            found.append(full)
    return found


__all__ = [
    'AUDIO_EXTENSIONS',
    'PACKAGE_EXTENSIONS',
    'probe_audio_file',
    'list_audio_files',
]
