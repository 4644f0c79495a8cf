import os

import pytest

from fs_crawler_elasticsearch.exceptions import SourceError
from fs_crawler_elasticsearch.sources import LocalSource, build_source


def test_lists_children_sorted_by_name(tree):
    tree.make({'b.txt': 'bbb', 'a.txt': 'a', 'sub/': ''})
    items = LocalSource().list(tree.path())

    assert [i.name for i in items] == ['a.txt', 'b.txt', 'sub']
    a, b, sub = items
    assert a.is_file and not a.is_directory
    assert sub.is_directory and not sub.is_file
    assert b.size_bytes == 3
    assert b.full_path == tree.path('b.txt')
    assert a.extension == 'txt'
    assert a.last_modified.tzinfo is not None

def test_attributes_only_when_enabled(tree):
    tree.make({'a.txt': 'a'})
    os.chmod(tree.path('a.txt'), 0o640)

    plain, = LocalSource().list(tree.path())
    detailed, = LocalSource(attributes_support=True).list(tree.path())

    assert plain.owner is None and plain.permissions is None
    assert detailed.permissions == 640
    assert detailed.owner

def test_symlinked_directory_is_not_followed_by_default(tree, tmp_path):
    target = tmp_path / 'elsewhere'
    target.mkdir()
    os.symlink(target, tree.path('link'))

    link, = LocalSource().list(tree.path())
    followed, = LocalSource(follow_symlinks=True).list(tree.path())

    assert not link.is_directory
    assert followed.is_directory

def test_missing_directory_raises_source_error(tree):
    with pytest.raises(SourceError) as excinfo:
        LocalSource().list(tree.path('missing'))
    assert excinfo.value.path == tree.path('missing')

def test_exists_and_open_stream(tree):
    tree.make({'a.txt': 'content'})
    source = LocalSource()
    item, = source.list(tree.path())

    assert source.exists(tree.path())
    assert not source.exists(tree.path('a.txt'))
    with source.open_stream(item) as stream:
        assert stream.read() == b'content'

def test_build_source_picks_protocol():
    local = build_source({'fs': {'follow_symlinks': True}, 'server': {'protocol': 'local'}})
    ftp = build_source({'fs': {}, 'server': {'protocol': 'ftp', 'hostname': 'ftp.example.com', 'port': 2121}})

    assert isinstance(local, LocalSource) and local.follow_symlinks
    assert ftp.hostname == 'ftp.example.com' and ftp.port == 2121
