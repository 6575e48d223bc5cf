"""Shared fixtures: EPUB archives, WAV audio and an isolated database."""

import io
import os
import struct
import wave
import zipfile

import pytest

from readcast.database import set_db_path, init_db, get_db

CONTAINER_XML = '''<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
'''

XHTML = '''<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml"><body>
<p id="p1">Call me Ishmael.</p>
<p id="p2">Some years ago.</p>
</body></html>
'''


def wav_bytes(seconds=0.5, rate=8000):
    """Mono 16-bit silence."""
    buf = io.BytesIO()
    with wave.open(buf, 'wb') as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(rate)
        w.writeframes(b'\x00\x00' * int(seconds * rate))
    return buf.getvalue()


def write_wav(path, seconds=0.5):
    os.makedirs(os.path.dirname(str(path)), exist_ok=True)
    with open(path, 'wb') as f:
        f.write(wav_bytes(seconds))
    return str(path)


def damage_member(path, name):
    """Overwrite the compressed bytes of one deflated member so inflating it fails."""
    with zipfile.ZipFile(path) as zf:
        info = zf.getinfo(name)
    with open(path, 'r+b') as f:
        f.seek(info.header_offset + 26)
        name_len, extra_len = struct.unpack('<HH', f.read(4))
        f.seek(info.header_offset + 30 + name_len + extra_len)
        # 0xFF opens a deflate block with the reserved block type
        f.write(b'\xff' * info.compress_size)
    return str(path)


def make_epub(path, files, opf_path='OEBPS/content.opf', compression=zipfile.ZIP_STORED):
    """Write an EPUB zip with a container pointing at ``opf_path`` plus ``files``."""
    os.makedirs(os.path.dirname(str(path)), exist_ok=True)
    with zipfile.ZipFile(path, 'w', compression=compression) as zf:
        zf.writestr('mimetype', 'application/epub+zip')
        zf.writestr('META-INF/container.xml', CONTAINER_XML.format(opf_path=opf_path))
        for name, data in files.items():
            zf.writestr(name, data)
    return str(path)


def opf_xml(manifest, spine, metadata=''):
    return f'''<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" xmlns:opf="http://www.idpf.org/2007/opf"
         version="3.0" unique-identifier="bookid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
{metadata}
  </metadata>
  <manifest>
{manifest}
  </manifest>
  <spine>
{spine}
  </spine>
</package>
'''


def smil_xml(pars):
    """``pars`` is a list of (par_id, text_src, audio_src, begin, end)."""
    body = '\n'.join(
        f'''      <par id="{pid}">
        <text src="{text}"/>
        <audio src="{audio}" clipBegin="{begin}" clipEnd="{end}"/>
      </par>''' for pid, text, audio, begin, end in pars)
    return f'''<?xml version="1.0" encoding="UTF-8"?>
<smil xmlns="http://www.w3.org/ns/SMIL" version="3.0">
  <body>
    <seq id="seq1">
{body}
    </seq>
  </body>
</smil>
'''


def readalong_files():
    """A read-along book with SMIL and audio nested two levels deep.

    OPF:   OEBPS/content.opf
    text:  OEBPS/text/ch1.xhtml, OEBPS/text/ch2.xhtml
    SMIL:  OEBPS/smil/deep/ch1.smil, OEBPS/smil/deep/ch2.smil
    audio: audio/tracks/ch1.wav, audio/tracks/ch2.wav
    """
    metadata = '''    <dc:title>Moby Dick</dc:title>
    <dc:creator id="author">Herman Melville</dc:creator>
    <dc:contributor id="reader">Jane Reader</dc:contributor>
    <meta refines="#reader" property="role" scheme="marc:relators">nrt</meta>
    <dc:identifier id="bookid">urn:isbn:9780000000001</dc:identifier>
    <dc:language>en</dc:language>'''
    manifest = '''    <item id="ch1" href="text/ch1.xhtml" media-type="application/xhtml+xml" media-overlay="smil1"/>
    <item id="ch2" href="text/ch2.xhtml" media-type="application/xhtml+xml" media-overlay="smil2"/>
    <item id="smil1" href="smil/deep/ch1.smil" media-type="application/smil+xml"/>
    <item id="smil2" href="smil/deep/ch2.smil" media-type="application/smil+xml"/>
    <item id="a1" href="../audio/tracks/ch1.wav" media-type="audio/wav"/>
    <item id="a2" href="../audio/tracks/ch2.wav" media-type="audio/wav"/>
    <item id="cover" href="images/cover.jpg" media-type="image/jpeg" properties="cover-image"/>'''
    spine = '''    <itemref idref="ch1"/>
    <itemref idref="ch2"/>'''
    return {
        'OEBPS/content.opf': opf_xml(manifest, spine, metadata),
        'OEBPS/text/ch1.xhtml': XHTML,
        'OEBPS/text/ch2.xhtml': XHTML,
        'OEBPS/images/cover.jpg': b'\xff\xd8\xff\xe0fakejpeg',
        'OEBPS/smil/deep/ch1.smil': smil_xml([
            ('par1', '../../text/ch1.xhtml#p1', '../../../audio/tracks/ch1.wav', '0:00:00.000', '0:00:00.200'),
            ('par2', '../../text/ch1.xhtml#p2', '../../../audio/tracks/ch1.wav', '0:00:00.200', '0:00:00.500'),
        ]),
        'OEBPS/smil/deep/ch2.smil': smil_xml([
            ('par3', '../../text/ch2.xhtml#p1', '../../../audio/tracks/ch2.wav', '0s', '250ms'),
        ]),
        'audio/tracks/ch1.wav': wav_bytes(0.5),
        'audio/tracks/ch2.wav': wav_bytes(0.25),
    }


def plain_files(title='Plain Book'):
    """A text-only book without media overlays."""
    manifest = '    <item id="ch1" href="ch1.xhtml" media-type="application/xhtml+xml"/>'
    spine = '    <itemref idref="ch1"/>'
    metadata = f'    <dc:title>{title}</dc:title>\n    <dc:creator>Anon</dc:creator>'
    return {
        'OEBPS/content.opf': opf_xml(manifest, spine, metadata),
        'OEBPS/ch1.xhtml': XHTML,
    }


@pytest.fixture
def readalong_epub(tmp_path):
    return make_epub(tmp_path / 'books' / 'Moby Dick.epub', readalong_files())


@pytest.fixture
def plain_epub(tmp_path):
    return make_epub(tmp_path / 'books' / 'Plain.epub', plain_files())


@pytest.fixture
def db(tmp_path):
    """A fresh database; yields a get_db callable bound to it."""
    db_path = str(tmp_path / 'readcast.db')
    set_db_path(db_path)
    init_db(db_path)

    def _get_db():
        return get_db(db_path)

    yield _get_db
    set_db_path(None)
