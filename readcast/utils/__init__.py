"""Utility functions for Readcast."""

from readcast.utils.smil_time import smil_time_to_seconds
from readcast.utils.audio import (
    AUDIO_EXTENSIONS,
    PACKAGE_EXTENSIONS,
    probe_audio_file,
    list_audio_files,
)
from readcast.utils.path_safety import (
    decode_href,
    split_fragment,
    resolve_href,
    relative_to,
    is_hidden,
)

__all__ = [
    # smil_time
    'smil_time_to_seconds',
    # audio
    'AUDIO_EXTENSIONS',
    'PACKAGE_EXTENSIONS',
    'probe_audio_file',
    'list_audio_files',
    # path_safety
    'decode_href',
    'split_fragment',
    'resolve_href',
    'relative_to',
    'is_hidden',
]
