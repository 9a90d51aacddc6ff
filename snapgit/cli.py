import argparse
import logging
import os
import sys
import textwrap
import time
import zlib

from . import base
from . import data
from .index import CorruptIndexError
from .workspace import PathspecError


def main(argv=None):
    with data.change_git_dir('.'):
        args = parse_args(argv)
        logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                            format='%(levelname)s %(name)s: %(message)s')
        try:
            args.func(args)
        except (CorruptIndexError, PathspecError, ValueError, OSError, zlib.error) as e:
            sys.exit(f'fatal: {e}')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='snapgit')
    parser.add_argument('-v', '--verbose', action='store_true')
    commands = parser.add_subparsers(dest='command')
    commands.required = True

    oid = base.get_oid

    init_parser = commands.add_parser('init')
    init_parser.set_defaults(func=init)

    add_parser = commands.add_parser('add')
    add_parser.set_defaults(func=add)
    add_parser.add_argument('paths', nargs='+')

    commit_parser = commands.add_parser('commit')
    commit_parser.set_defaults(func=commit)
    commit_parser.add_argument('-m', '--message')

    hash_object_parser = commands.add_parser('hash-object')
    hash_object_parser.set_defaults(func=hash_object)
    hash_object_parser.add_argument('file')

    cat_file_parser = commands.add_parser('cat-file')
    cat_file_parser.set_defaults(func=cat_file)
    cat_file_parser.add_argument('object', type=oid)

    write_tree_parser = commands.add_parser('write-tree')
    write_tree_parser.set_defaults(func=write_tree)

    ls_files_parser = commands.add_parser('ls-files')
    ls_files_parser.set_defaults(func=ls_files)
    ls_files_parser.add_argument('-s', '--stage', action='store_true')

    ls_tree_parser = commands.add_parser('ls-tree')
    ls_tree_parser.set_defaults(func=ls_tree)
    ls_tree_parser.add_argument('tree', type=oid)

    log_parser = commands.add_parser('log')
    log_parser.set_defaults(func=log)
    log_parser.add_argument('oid', type=oid, nargs='?')

    return parser.parse_args(argv)


def init(args):
    base.init()
    print(f'Initialized empty snapgit repository in {os.getcwd()}/{data.GIT_DIR}')


def add(args):
    base.add(args.paths)


def commit(args):
    message = args.message
    if message is None:
        message = sys.stdin.read()
    parent = data.read_head()
    commit_ = base.commit(message)
    root_msg = '' if parent else '(root-commit) '
    first_line = message.splitlines()[0] if message else ''
    print(f'[{root_msg}{commit_.oid}] {first_line}')


def hash_object(args):
    with open(args.file, 'rb') as f:
        print(data.hash_object(f.read()))


def cat_file(args):
    sys.stdout.flush()
    sys.stdout.buffer.write(data.get_object(args.object, expected=None))


def write_tree(args):
    print(base.write_tree().oid)


def ls_files(args):
    for entry in data.read_index().entries():
        if args.stage:
            print(f'{entry.metadata.mode:o} {entry.oid}\t{entry.path}')
        else:
            print(entry.path)


def ls_tree(args):
    for mode, name, oid in base.get_tree(args.tree):
        type_ = 'tree' if mode == '40000' else 'blob'
        print(f'{mode.zfill(6)} {type_} {oid}\t{name}')


def log(args):
    for oid, commit_ in base.iter_commits(args.oid or data.read_head()):
        date = _format_date(commit_.timestamp, commit_.tz_offset)
        print(f'commit {oid}')
        print(f'Author: {commit_.author}')
        print(f'Date:   {date}\n')
        print(textwrap.indent(commit_.message, '    '))
        print('')


def _format_date(timestamp, tz_offset):
    sign = -1 if tz_offset[0] == '-' else 1
    seconds = sign * (int(tz_offset[1:3]) * 3600 + int(tz_offset[3:5]) * 60)
    return f"{time.strftime('%a %b %d %H:%M:%S %Y', time.gmtime(timestamp + seconds))} {tz_offset}"
