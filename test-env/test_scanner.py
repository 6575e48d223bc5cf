"""Library scanning and reconciliation against the stored catalog."""

import os
import shutil
import zipfile

from conftest import damage_member, make_epub, plain_files, readalong_files, write_wav
from readcast.database import create_library, get_books_by_library, get_library
from readcast.epub.extractor import sidecar_dir_for
from readcast.models.book import BookKind, CatalogEntry
from readcast.scanner import LibraryScanner, compare_books, scan_library


def _entry(path, mtime=1, size=1, book_id=None):
    return CatalogEntry(library_id='lib', kind=BookKind.TEXT, path=path, mtime=mtime,
                        size=size, title=os.path.basename(path), id=book_id)


def _library(db, *folders):
    conn = db()
    try:
        return create_library(conn, 'Books', folders=[str(f) for f in folders])['id']
    finally:
        conn.close()


def _books(db, library_id):
    conn = db()
    try:
        return {book.path: book for book in get_books_by_library(conn, library_id)}
    finally:
        conn.close()


def _bump_mtime(path, seconds=10):
    stats = os.stat(path)
    os.utime(path, ns=(stats.st_atime_ns, stats.st_mtime_ns + seconds * 1_000_000_000))


def test_compare_books_classifies_by_path_and_fingerprint():
    existing = [_entry('/a', book_id='1'), _entry('/b', book_id='2'), _entry('/c', book_id='3')]
    scanned = [_entry('/a'), _entry('/b', mtime=2), _entry('/d')]
    to_delete, to_insert = compare_books(existing, scanned)

    assert sorted(b.id for b in to_delete) == ['2', '3']
    assert sorted(b.path for b in to_insert) == ['/b', '/d']


def test_scanner_classifies_epubs_audio_folders_and_plain_folders(tmp_path):
    root = tmp_path / 'library'
    make_epub(root / 'Moby Dick.epub', readalong_files())
    make_epub(root / 'nested' / 'deeper' / 'Plain.epub', plain_files())
    write_wav(root / 'Audiobook' / '02.wav', seconds=0.25)
    write_wav(root / 'Audiobook' / '01.wav', seconds=0.5)
    write_wav(root / 'Audiobook' / 'Disc 2' / 'ignored.wav')
    (root / '.hidden').mkdir()
    make_epub(root / '.hidden' / 'Secret.epub', plain_files())

    entries = {e.path: e for e in LibraryScanner('lib').scan_folders([str(root)])}

    assert sorted(entries) == sorted([
        str(root / 'Audiobook'),
        str(root / 'Moby Dick.epub'),
        str(root / 'nested' / 'deeper' / 'Plain.epub'),
    ])
    assert entries[str(root / 'Moby Dick.epub')].kind == BookKind.TEXT_WITH_AUDIO
    assert entries[str(root / 'nested' / 'deeper' / 'Plain.epub')].kind == BookKind.TEXT

    folder = entries[str(root / 'Audiobook')]
    assert folder.kind == BookKind.AUDIO_ONLY
    assert folder.title == 'Audiobook'
    assert folder.folder_path == str(root / 'Audiobook')
    assert [t.rel_path for t in folder.playlist] == ['01.wav', '02.wav']
    assert [t.title for t in folder.playlist] == ['01.wav', '02.wav']
    assert folder.duration > 0


def test_bad_epub_is_skipped_and_its_sidecar_cleared(tmp_path):
    root = tmp_path / 'library'
    make_epub(root / 'Good.epub', plain_files())
    make_epub(root / 'NoOpf.epub', {'OEBPS/ch1.xhtml': '<html/>'})
    (root / 'Corrupt.epub').write_bytes(b'garbage')

    scanner = LibraryScanner('lib')
    entries = scanner.scan_folders([str(root)])

    assert [e.path for e in entries] == [str(root / 'Good.epub')]
    assert sorted(scanner.skipped) == [str(root / 'Corrupt.epub'), str(root / 'NoOpf.epub')]
    assert not os.path.exists(sidecar_dir_for(str(root / 'NoOpf.epub')))


def test_rescan_without_changes_is_a_no_op(tmp_path, db):
    root = tmp_path / 'library'
    make_epub(root / 'Moby Dick.epub', readalong_files())
    write_wav(root / 'Audiobook' / '01.wav')
    library_id = _library(db, root)

    first = scan_library(library_id, db)
    assert (first.unchanged, first.deleted, first.inserted) == (0, 0, 2)
    ids_before = {path: book.id for path, book in _books(db, library_id).items()}

    second = scan_library(library_id, db)
    assert (second.unchanged, second.deleted, second.inserted) == (2, 0, 0)
    assert second.summary() == "2 unchanged, 0 deleted, 0 added"
    assert {path: book.id for path, book in _books(db, library_id).items()} == ids_before


def test_changed_and_removed_files_are_reconciled(tmp_path, db):
    root = tmp_path / 'library'
    moby = make_epub(root / 'Moby Dick.epub', readalong_files())
    plain = make_epub(root / 'Plain.epub', plain_files())
    library_id = _library(db, root)
    scan_library(library_id, db)
    old_moby_id = _books(db, library_id)[moby].id

    _bump_mtime(moby)
    os.remove(plain)
    make_epub(root / 'New.epub', plain_files('New Book'))

    result = scan_library(library_id, db)
    assert (result.unchanged, result.deleted, result.inserted) == (0, 2, 2)

    books = _books(db, library_id)
    assert sorted(books) == sorted([moby, str(root / 'New.epub')])
    assert books[moby].id != old_moby_id
    assert books[str(root / 'New.epub')].title == 'New Book'


def test_same_mtime_and_size_is_never_re_ingested(tmp_path, db):
    root = tmp_path / 'library'
    path = make_epub(root / 'Plain.epub', plain_files('First Title'))
    library_id = _library(db, root)
    scan_library(library_id, db)
    stats = os.stat(path)

    # Same-length title keeps the archive size identical
    make_epub(root / 'Plain.epub', plain_files('Other Title'))
    os.utime(path, ns=(stats.st_atime_ns, stats.st_mtime_ns))
    assert os.stat(path).st_size == stats.st_size

    result = scan_library(library_id, db)
    assert result.inserted == 0
    assert _books(db, library_id)[path].title == 'First Title'


def test_removed_audio_folder_is_deleted(tmp_path, db):
    root = tmp_path / 'library'
    write_wav(root / 'Audiobook' / '01.wav')
    library_id = _library(db, root)
    scan_library(library_id, db)

    shutil.rmtree(root / 'Audiobook')
    result = scan_library(library_id, db)
    assert result.deleted == 1
    assert _books(db, library_id) == {}


def test_scan_records_last_scan(tmp_path, db):
    root = tmp_path / 'library'
    root.mkdir()
    library_id = _library(db, root)
    scan_library(library_id, db)

    conn = db()
    try:
        assert get_library(conn, library_id)['last_scan'] is not None
    finally:
        conn.close()


def test_missing_library_folder_is_tolerated(tmp_path, db):
    library_id = _library(db, tmp_path / 'does-not-exist')
    result = scan_library(library_id, db)
    assert (result.unchanged, result.deleted, result.inserted) == (0, 0, 0)


def test_epub_with_damaged_deflate_data_is_skipped(tmp_path, db):
    root = tmp_path / 'library'
    make_epub(root / 'Good.epub', plain_files())
    damaged = make_epub(root / 'Damaged.epub', plain_files('Damaged'), compression=zipfile.ZIP_DEFLATED)
    damage_member(damaged, 'OEBPS/content.opf')

    scanner = LibraryScanner('lib')
    entries = scanner.scan_folders([str(root)])
    assert [e.path for e in entries] == [str(root / 'Good.epub')]
    assert scanner.skipped == [damaged]
    assert not os.path.exists(sidecar_dir_for(damaged))

    result = scan_library(_library(db, root), db)
    assert (result.unchanged, result.deleted, result.inserted) == (0, 0, 1)
    assert result.skipped == [damaged]


def test_overlapping_library_folders_catalog_each_book_once(tmp_path, db):
    root = tmp_path / 'library'
    nested = root / 'Fiction'
    make_epub(nested / 'Plain.epub', plain_files())
    write_wav(nested / 'Audiobook' / '01.wav')

    scanner = LibraryScanner('lib')
    entries = scanner.scan_folders([str(root), str(nested), str(root)])
    assert sorted(e.path for e in entries) == [str(nested / 'Audiobook'), str(nested / 'Plain.epub')]

    library_id = _library(db, root, nested)
    result = scan_library(library_id, db)
    assert (result.unchanged, result.deleted, result.inserted) == (0, 0, 2)
    assert sorted(_books(db, library_id)) == [str(nested / 'Audiobook'), str(nested / 'Plain.epub')]
