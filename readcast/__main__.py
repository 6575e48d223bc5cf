"""Command line entry point: ``python -m readcast``."""

import argparse
import json
import logging
import sys

from readcast import __version__
from readcast.config import DATA_DIR, DB_PATH, LOG_PATH, init_config, load_config
from readcast.database import (
    set_db_path, init_db, get_db,
    create_library, list_libraries, get_library, get_books_by_library,
)
from readcast.epub.extractor import EpubExtractor
from readcast.errors import LibraryNotFoundError, TaskConflictError, TaskNotFoundError
from readcast.worker import init_runner

logger = logging.getLogger('readcast')


def setup_logging(config):
    level = getattr(logging, str(config.get('log_level', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(LOG_PATH),
            logging.StreamHandler()
        ]
    )


def _print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False))


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='readcast',
        description="Catalog EPUBs, read-along EPUBs and audiobook folders",
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('init', help="Create the data directory, default config and database")

    library = sub.add_parser('library', help="Manage libraries")
    library_sub = library.add_subparsers(dest='library_command', required=True)
    add = library_sub.add_parser('add', help="Create a library")
    add.add_argument('name')
    add.add_argument('folders', nargs='+', help="Absolute folder paths")
    library_sub.add_parser('list', help="List libraries")
    folders = library_sub.add_parser('folders', help="Show a library's folders")
    folders.add_argument('library_id')

    scan = sub.add_parser('scan', help="Start a library scan")
    scan.add_argument('library_id')
    scan.add_argument('--wait', action='store_true', help="Print the finished task record")

    task = sub.add_parser('task', help="Show a task")
    task.add_argument('task_id')

    books = sub.add_parser('books', help="List a library's books")
    books.add_argument('library_id')

    clear = sub.add_parser('clear-cache', help="Remove the extracted copy of an EPUB")
    clear.add_argument('package')

    return parser.parse_args(argv)


def run_command(args, config) -> int:
    if args.command == 'init':
        print(f"Data directory: {DATA_DIR}")
        return 0

    if args.command == 'clear-cache':
        EpubExtractor(args.package, config=config).clear()
        print(f"Cleared extracted data for {args.package}")
        return 0

    if args.command == 'library':
        conn = get_db()
        try:
            if args.library_command == 'add':
                _print_json(create_library(conn, args.name, folders=args.folders))
            elif args.library_command == 'list':
                _print_json(list_libraries(conn))
            elif args.library_command == 'folders':
                library = get_library(conn, args.library_id)
                if not library:
                    raise LibraryNotFoundError(f"library id [{args.library_id}] not exist")
                _print_json(library['folders'])
        finally:
            conn.close()
        return 0

    if args.command == 'books':
        conn = get_db()
        try:
            _print_json([book.to_dict() for book in get_books_by_library(conn, args.library_id)])
        finally:
            conn.close()
        return 0

    runner = init_runner(get_db, config=config)

    if args.command == 'scan':
        task = runner.start_scan(args.library_id)
        print(task.id, flush=True)
        # The scan runs on a daemon thread; leaving early would strand the task as pending
        runner.join(task.id)
        if args.wait:
            _print_json(runner.get_task(task.id).to_dict())
        return 0

    if args.command == 'task':
        _print_json(runner.get_task(args.task_id).to_dict())
        return 0

    return 2


def main(argv=None) -> int:
    args = parse_args(argv)

    init_config()
    config = load_config()
    setup_logging(config)

    set_db_path(str(DB_PATH))
    init_db()

    try:
        return run_command(args, config)
    except (TaskConflictError, TaskNotFoundError, LibraryNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
