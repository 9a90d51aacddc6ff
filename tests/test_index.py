"""
Staging index: conflict eviction, binary layout and corruption detection.
"""
import hashlib
import os
import stat
import struct

import pytest

from snapgit.index import (
    EXECUTABLE_MODE,
    REGULAR_MODE,
    CorruptIndexError,
    Index,
    IndexEntry,
    IndexMetadata,
    _pack_entry,
    parent_directories,
)

FAKE_OID = hashlib.sha1(b'').hexdigest()
OTHER_OID = hashlib.sha1(b'other').hexdigest()

METADATA = IndexMetadata(
    ctime=1700000000, ctime_nsec=123456789,
    mtime=1700000001, mtime_nsec=987654321,
    dev=2049, ino=1234567, mode=REGULAR_MODE,
    uid=1000, gid=1000, size=42,
)


def add_all(index, paths, oid=FAKE_OID, metadata=METADATA):
    for path in paths:
        index.add(path, oid, metadata)
    return index


def with_checksum(body: bytes) -> bytes:
    return body + hashlib.sha1(body).digest()


def rebuilt_children(index):
    children = {}
    for path in index.paths():
        for dirname in parent_directories(path):
            children.setdefault(dirname, set()).add(path)
    return children


class TestAdd:
    def test_add_basic(self):
        index = add_all(Index(), ['filepath'])
        assert len(index) == 1
        assert index['filepath'] == IndexEntry('filepath', FAKE_OID, METADATA)

    @pytest.mark.parametrize('oid', ['abcd', FAKE_OID.upper(), FAKE_OID + '00', 'z' * 40])
    def test_add_rejects_malformed_oid(self, oid):
        index = add_all(Index(), ['a.txt'])
        with pytest.raises(ValueError):
            index.add('a.txt', oid, METADATA)
        assert index['a.txt'].oid == FAKE_OID

    @pytest.mark.parametrize('field', ['size', 'mtime', 'ino'])
    def test_add_rejects_metadata_wider_than_32_bits(self, field):
        index = Index()
        with pytest.raises(ValueError, match=field):
            index.add('big.bin', FAKE_OID, METADATA._replace(**{field: 2 ** 32}))
        with pytest.raises(ValueError):
            index.add('big.bin', FAKE_OID, METADATA._replace(**{field: -1}))
        assert len(index) == 0

    def test_add_overwrites_same_path(self):
        index = Index()
        index.add('a.txt', FAKE_OID, METADATA)
        index.add('a.txt', OTHER_OID, METADATA)
        assert index.paths() == ['a.txt']
        assert index['a.txt'].oid == OTHER_OID

    def test_file_replaced_by_directory(self):
        index = add_all(Index(), ['alice.txt', 'bob.txt', 'alice.txt/nested.txt'])
        assert index.paths() == ['alice.txt/nested.txt', 'bob.txt']

    def test_directory_replaced_by_file(self):
        index = add_all(Index(), ['alice.txt', 'nested/bob.txt', 'nested/inner/claire.txt', 'nested'])
        assert index.paths() == ['alice.txt', 'nested']

    def test_deep_ancestor_file_evicted(self):
        index = add_all(Index(), ['a', 'a/b/c/d.txt'])
        assert index.paths() == ['a/b/c/d.txt']

    def test_sibling_prefix_is_not_a_conflict(self):
        index = add_all(Index(), ['nested.txt', 'nested/a.txt', 'nestedfile', 'nested'])
        assert index.paths() == ['nested', 'nested.txt', 'nestedfile']

    def test_children_structure_tracks_entries(self):
        index = add_all(Index(), ['alice.txt', 'nested/bob.txt', 'nested/inner/claire.txt'])
        assert index.tracked_under('nested') == {'nested/bob.txt', 'nested/inner/claire.txt'}
        assert index.tracked_under('nested/inner') == {'nested/inner/claire.txt'}

        index.add('nested', FAKE_OID, METADATA)
        assert index.tracked_under('nested') == set()
        assert index.tracked_under('nested/inner') == set()
        assert index._children == rebuilt_children(index) == {}

        index.add('nested/x/y.txt', FAKE_OID, METADATA)
        assert index._children == rebuilt_children(index)
        assert index.tracked_under('nested/x') == {'nested/x/y.txt'}

    def test_paths_sorted_bytewise(self):
        index = add_all(Index(), ['b', 'a/b', 'a.txt', 'A'])
        assert index.paths() == ['A', 'a.txt', 'a/b', 'b']
        assert list(index) == index.paths()
        assert [e.path for e in index.entries()] == index.paths()


class TestPersistence:
    def test_missing_file_is_empty_index(self, tmp_path):
        index = Index.load(str(tmp_path / 'index'))
        assert len(index) == 0
        assert index.paths() == []

    def test_round_trip(self, tmp_path):
        path = str(tmp_path / 'index')
        index = Index()
        index.add('src/main.py', FAKE_OID, METADATA)
        index.add('run.sh', OTHER_OID, METADATA._replace(mode=EXECUTABLE_MODE, size=7))
        index.add('docs/a/b/c.txt', FAKE_OID, METADATA._replace(ino=99))
        index.persist(path)

        loaded = Index.load(path)
        assert loaded.entries() == index.entries()
        assert loaded.paths() == ['docs/a/b/c.txt', 'run.sh', 'src/main.py']
        assert loaded._children == index._children

    def test_round_trip_after_evictions(self, tmp_path):
        path = str(tmp_path / 'index')
        index = add_all(Index(), ['alice.txt', 'nested/bob.txt', 'nested/inner/claire.txt', 'nested'])
        index.persist(path)
        loaded = Index.load(path)
        assert loaded.paths() == ['alice.txt', 'nested']
        assert loaded._children == {}

    def test_empty_index_layout(self, tmp_path):
        path = tmp_path / 'index'
        Index().persist(str(path))
        header = b'DIRC' + struct.pack('>LL', 2, 0)
        assert path.read_bytes() == with_checksum(header)

    def test_single_entry_layout(self, tmp_path):
        path = tmp_path / 'index'
        index = Index()
        index.add('a.txt', FAKE_OID, METADATA)
        index.persist(str(path))

        entry = struct.pack('>10L', *METADATA) + bytes.fromhex(FAKE_OID) + struct.pack('>H', 5)
        entry += b'a.txt' + b'\x00' * 5
        assert len(entry) == 72
        expected = with_checksum(b'DIRC' + struct.pack('>LL', 2, 1) + entry)
        assert path.read_bytes() == expected

    def test_aligned_path_gets_full_block_of_padding(self):
        # 62 fixed bytes + 2 path bytes is already a multiple of 8
        packed = _pack_entry(IndexEntry('ab', FAKE_OID, METADATA))
        assert len(packed) == 72
        assert packed.endswith(b'ab' + b'\x00' * 8)

    def test_long_path_round_trip(self, tmp_path):
        path = str(tmp_path / 'index')
        long_path = 'd/' * 2100 + 'file.txt'
        assert len(long_path) > 0xFFF
        index = add_all(Index(), [long_path, 'short.txt'])
        index.persist(path)

        data = open(path, 'rb').read()
        flags = struct.unpack_from('>H', data, 12 + 60)[0]
        assert flags == 0xFFF

        loaded = Index.load(path)
        assert loaded.paths() == [long_path, 'short.txt']
        assert loaded[long_path] == index[long_path]

    def test_path_at_flags_cap_round_trip(self, tmp_path):
        path = str(tmp_path / 'index')
        capped = 'x' * 0xFFF
        index = add_all(Index(), [capped, 'y.txt'])
        index.persist(path)

        data = open(path, 'rb').read()
        assert struct.unpack_from('>H', data, 12 + 60)[0] == 0xFFF

        loaded = Index.load(path)
        assert loaded.entries() == index.entries()

    def test_persisted_file_is_world_readable(self, tmp_path):
        path = tmp_path / 'index'
        add_all(Index(), ['a.txt']).persist(str(path))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o644

    def test_persist_replaces_existing_file(self, tmp_path):
        path = str(tmp_path / 'index')
        add_all(Index(), ['one', 'two']).persist(path)
        add_all(Index(), ['three']).persist(path)
        assert Index.load(path).paths() == ['three']
        assert os.listdir(tmp_path) == ['index']

    def test_non_ascii_path(self, tmp_path):
        path = str(tmp_path / 'index')
        add_all(Index(), ['café/menü.txt']).persist(path)
        assert Index.load(path).paths() == ['café/menü.txt']


class TestCorruption:
    @pytest.fixture
    def index_file(self, tmp_path):
        path = tmp_path / 'index'
        add_all(Index(), ['a.txt', 'dir/b.txt']).persist(str(path))
        return path

    def test_bad_signature(self, index_file):
        data = index_file.read_bytes()
        index_file.write_bytes(with_checksum(b'CRID' + data[4:-20]))
        with pytest.raises(CorruptIndexError, match='signature'):
            Index.load(str(index_file))

    def test_bad_version(self, index_file):
        data = index_file.read_bytes()
        index_file.write_bytes(with_checksum(data[:4] + struct.pack('>L', 3) + data[8:-20]))
        with pytest.raises(CorruptIndexError, match='version'):
            Index.load(str(index_file))

    def test_flipped_byte_fails_checksum(self, index_file):
        data = bytearray(index_file.read_bytes())
        data[20] ^= 0xFF  # inside the first entry's mtime
        index_file.write_bytes(bytes(data))
        with pytest.raises(CorruptIndexError, match='checksum'):
            Index.load(str(index_file))

    def test_bad_trailer(self, index_file):
        data = index_file.read_bytes()
        index_file.write_bytes(data[:-20] + b'\x00' * 20)
        with pytest.raises(CorruptIndexError, match='checksum'):
            Index.load(str(index_file))

    def test_trailing_garbage(self, index_file):
        index_file.write_bytes(index_file.read_bytes() + b'\x00')
        with pytest.raises(CorruptIndexError, match='checksum'):
            Index.load(str(index_file))

    def test_nonzero_padding(self, index_file):
        data = bytearray(index_file.read_bytes()[:-20])
        # 'a.txt' entry: 12 header + 62 fixed + 5 path + NUL, then padding
        data[12 + 62 + 5 + 1] = 0x01
        index_file.write_bytes(with_checksum(bytes(data)))
        with pytest.raises(CorruptIndexError, match='padding'):
            Index.load(str(index_file))

    def test_truncated_file(self, index_file):
        index_file.write_bytes(index_file.read_bytes()[:40])
        with pytest.raises(CorruptIndexError):
            Index.load(str(index_file))

    def test_truncated_header(self, index_file):
        index_file.write_bytes(b'DIRC')
        with pytest.raises(CorruptIndexError, match='header'):
            Index.load(str(index_file))

    def test_entry_count_larger_than_entries(self, index_file):
        data = index_file.read_bytes()
        index_file.write_bytes(with_checksum(data[:8] + struct.pack('>L', 3) + data[12:-20]))
        with pytest.raises(CorruptIndexError):
            Index.load(str(index_file))

    def test_unsorted_entries(self, index_file):
        entries = [IndexEntry(p, FAKE_OID, METADATA) for p in ('b.txt', 'a.txt')]
        body = b'DIRC' + struct.pack('>LL', 2, 2) + b''.join(_pack_entry(e) for e in entries)
        index_file.write_bytes(with_checksum(body))
        with pytest.raises(CorruptIndexError, match='order'):
            Index.load(str(index_file))


class TestMetadata:
    def test_from_stat_regular_file(self, tmp_path):
        path = tmp_path / 'file.txt'
        path.write_bytes(b'12345')
        path.chmod(0o640)
        st = os.stat(path)
        metadata = IndexMetadata.from_stat(st)
        assert metadata.mode == REGULAR_MODE
        assert metadata.size == 5
        assert metadata.ino == st.st_ino & 0xFFFFFFFF
        assert metadata.mtime == st.st_mtime_ns // 1_000_000_000
        assert metadata.mtime_nsec == st.st_mtime_ns % 1_000_000_000
        assert not metadata.executable

    def test_from_stat_executable(self, tmp_path):
        path = tmp_path / 'run.sh'
        path.write_bytes(b'#!/bin/sh\n')
        path.chmod(0o700)
        metadata = IndexMetadata.from_stat(os.stat(path))
        assert metadata.mode == EXECUTABLE_MODE
        assert metadata.executable

    def test_parent_directories(self):
        assert parent_directories('a/b/c.txt') == ['a', 'a/b']
        assert parent_directories('c.txt') == []
