"""SMIL parsing and the OPF-relative / root-relative path rewrite."""

import pytest

from conftest import make_epub, readalong_files
from readcast.epub.extractor import EpubExtractor
from readcast.epub.opf import load_package
from readcast.epub.smil import (
    parse_smil_content, parse_sync_pars, write_merged_smil, read_merged_smil,
)
from readcast.errors import PackageError


def _index_for(epub_path):
    extractor = EpubExtractor(epub_path)
    extractor.ensure_extracted()
    return load_package(extractor.extract_dir)


def test_nested_paths_rewritten_against_two_bases(readalong_epub):
    pars = parse_sync_pars(_index_for(readalong_epub))

    assert [p.id for p in pars] == ['par1', 'par2', 'par3']
    first = pars[0]
    assert first.text_src == 'text/ch1.xhtml'
    assert first.text_id == 'p1'
    assert first.audio_src == 'audio/tracks/ch1.wav'
    assert first.clip_begin == pytest.approx(0.0)
    assert first.clip_end == pytest.approx(0.2)
    assert pars[2].text_src == 'text/ch2.xhtml'
    assert pars[2].audio_src == 'audio/tracks/ch2.wav'
    assert pars[2].clip_end == pytest.approx(0.25)
    assert not any(p.text_src.startswith('..') or p.audio_src.startswith('..') for p in pars)


def test_opf_at_package_root_keeps_text_and_audio_bases_equal(tmp_path):
    files = {
        name.replace('OEBPS/', '', 1): data
        for name, data in readalong_files().items()
        if name.startswith('OEBPS/')
    }
    files['content.opf'] = files['content.opf'].replace('../audio/', 'audio/')
    files['smil/deep/ch1.smil'] = files['smil/deep/ch1.smil'].replace('../../../audio/', '../../audio/')
    files['smil/deep/ch2.smil'] = files['smil/deep/ch2.smil'].replace('../../../audio/', '../../audio/')
    files['audio/tracks/ch1.wav'] = readalong_files()['audio/tracks/ch1.wav']
    files['audio/tracks/ch2.wav'] = readalong_files()['audio/tracks/ch2.wav']
    epub = make_epub(tmp_path / 'Flat.epub', files, opf_path='content.opf')

    pars = parse_sync_pars(_index_for(epub))
    assert pars[0].text_src == 'text/ch1.xhtml'
    assert pars[0].audio_src == 'audio/tracks/ch1.wav'


def test_pars_flattened_in_document_order_across_nested_seqs():
    xml = '''<smil xmlns="http://www.w3.org/ns/SMIL"><body>
      <par id="a"><text src="t.xhtml#1"/><audio src="a.mp3" clipBegin="1s" clipEnd="2s"/></par>
      <seq>
        <par id="b"><text src="t.xhtml#2"/><audio src="a.mp3" clipBegin="2s" clipEnd="3s"/></par>
        <seq>
          <par id="c"><text src="t.xhtml#3"/><audio src="a.mp3" clipBegin="3s" clipEnd="4s"/></par>
        </seq>
      </seq>
      <par id="d"><text src="t.xhtml#4"/><audio src="b.mp3" clip-begin="0:00:04" clip-end="0:00:05"/></par>
    </body></smil>'''
    pars = parse_smil_content(xml)

    assert [p.id for p in pars] == ['a', 'b', 'c', 'd']
    assert pars[3].clip_begin == pytest.approx(4.0)
    assert pars[3].clip_end == pytest.approx(5.0)


def test_par_without_audio_is_dropped():
    xml = '''<smil><body><seq>
      <par id="keep"><text src="t.xhtml#1"/><audio src="a.mp3" clipBegin="0s" clipEnd="1s"/></par>
      <par id="noaudio"><text src="t.xhtml#2"/></par>
      <par id="notext"><audio src="a.mp3" clipBegin="1s" clipEnd="2s"/></par>
    </seq></body></smil>'''
    assert [p.id for p in parse_smil_content(xml)] == ['keep']


def test_smil_without_body_is_package_error():
    with pytest.raises(PackageError):
        parse_smil_content('<smil><head/></smil>')


def test_malformed_smil_is_package_error():
    with pytest.raises(PackageError):
        parse_smil_content('<smil><body>')


def test_missing_smil_file_is_skipped(tmp_path):
    files = readalong_files()
    del files['OEBPS/smil/deep/ch1.smil']
    epub = make_epub(tmp_path / 'Partial.epub', files)

    pars = parse_sync_pars(_index_for(epub))
    assert [p.id for p in pars] == ['par3']


def test_shared_overlay_is_parsed_once(tmp_path):
    files = readalong_files()
    files['OEBPS/content.opf'] = files['OEBPS/content.opf'].replace(
        'media-overlay="smil2"', 'media-overlay="smil1"')
    epub = make_epub(tmp_path / 'Shared.epub', files)

    pars = parse_sync_pars(_index_for(epub))
    assert [p.id for p in pars] == ['par1', 'par2']


def test_book_without_overlays_has_no_pars(plain_epub):
    assert parse_sync_pars(_index_for(plain_epub)) == []


def test_merged_cache_round_trip(readalong_epub, tmp_path):
    pars = parse_sync_pars(_index_for(readalong_epub))
    path = str(tmp_path / 'merged.json')
    write_merged_smil(pars, path)

    assert read_merged_smil(path) == pars
