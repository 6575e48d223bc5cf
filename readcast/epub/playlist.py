"""Playlist building from sync pars and probed audio."""

import logging
import os
from typing import Iterable, List

from readcast.models.book import AudioFileInfo, PlaylistTrack, SyncPar

logger = logging.getLogger(__name__)


def _track_from_audio(audio: AudioFileInfo, fallback_title: str) -> PlaylistTrack:
    return PlaylistTrack(
        file_path=audio.file_path,
        rel_path=audio.rel_path or audio.basename,
        title=audio.title or fallback_title,
        duration=audio.duration or 0.0,
    )


def build_playlist(pars: Iterable[SyncPar], audios: Iterable[AudioFileInfo]) -> List[PlaylistTrack]:
    """One track per distinct audio file, in order of first reference.

    Audio files are matched by basename. A par whose file was never probed
    (missing from the manifest or unreadable) is skipped.
    """
    by_name = {}
    for audio in audios:
        by_name.setdefault(audio.basename, audio)

    seen = set()
    tracks = []
    for par in pars:
        name = os.path.basename(par.audio_src)
        if name in seen:
            continue
        audio = by_name.get(name)
        if audio is None:
            continue
        seen.add(name)
        tracks.append(_track_from_audio(audio, os.path.splitext(name)[0]))

    logger.debug(f"Built playlist: {len(tracks)} tracks from {len(by_name)} audio files")
    return tracks


def build_folder_playlist(audios: Iterable[AudioFileInfo]) -> List[PlaylistTrack]:
    """Tracks for an audio folder: sorted by path, zero-length files dropped."""
    ordered = sorted(audios, key=lambda a: a.file_path)
    return [_track_from_audio(a, a.basename) for a in ordered if (a.duration or 0) > 0]


def total_duration(tracks: Iterable[PlaylistTrack]) -> float:
    return sum(track.duration for track in tracks)


__all__ = ['build_playlist', 'build_folder_playlist', 'total_duration']
