from unittest.mock import Mock, call

import pytest

from fs_crawler_elasticsearch.crawler.signing import IdentitySigner, sign
from fs_crawler_elasticsearch.elasticsearch.reconciler import BackendReconciler


def _file(backend, directory, name):
    backend.index('docs', sign(f'{directory}/{name}'), {
        'file': {'filename': name},
        'path': {'root': sign(directory), 'real': f'{directory}/{name}'},
    })

def _folder(backend, parent, path):
    backend.index('folders', sign(path), {
        'name': path.rsplit('/', 1)[1],
        'path': {'root': sign(parent), 'real': path},
    })

@pytest.fixture
def indexed(backend):
    _folder(backend, '/data', '/data/dir')
    _file(backend, '/data', 'top.txt')
    _file(backend, '/data/dir', 'a.txt')
    _folder(backend, '/data/dir', '/data/dir/sub1')
    _folder(backend, '/data/dir', '/data/dir/sub2')
    _file(backend, '/data/dir/sub1', 'file1')
    _file(backend, '/data/dir/sub2', 'file2')
    return backend

def _reconciler(backend, closed=False):
    return BackendReconciler(backend, 'docs', 'folders', IdentitySigner(), is_closed=lambda: closed)


def test_lists_direct_children_only(indexed):
    children = _reconciler(indexed).list_indexed_children('/data/dir')
    assert children.files == ['a.txt']
    assert sorted(children.folders) == ['/data/dir/sub1', '/data/dir/sub2']

def test_unknown_directory_has_no_children(indexed):
    children = _reconciler(indexed).list_indexed_children('/data/nowhere')
    assert children.files == []
    assert children.folders == []

def test_returns_nothing_while_closing(indexed):
    reconciler = _reconciler(indexed, closed=True)
    children = reconciler.list_indexed_children('/data/dir')
    assert children.files == []
    assert children.folders == []
    assert reconciler.collect_subtree_deletes('/data/dir') == []

def test_subtree_deletes_children_before_parents(indexed):
    operations = _reconciler(indexed).collect_subtree_deletes('/data/dir')
    order = [(op.collection, op.id) for op in operations]

    assert all(op.action == 'delete' for op in operations)
    assert order[0] == ('docs', sign('/data/dir/a.txt'))
    assert order[-1] == ('folders', sign('/data/dir'))
    assert order.index(('docs', sign('/data/dir/sub1/file1'))) < order.index(('folders', sign('/data/dir/sub1')))
    assert order.index(('docs', sign('/data/dir/sub2/file2'))) < order.index(('folders', sign('/data/dir/sub2')))
    assert len(order) == 6

def test_query_uses_signed_path_root():
    client = Mock()
    client.search.return_value = []

    _reconciler(client).list_indexed_children('/data')

    assert client.search.call_args_list == [
        call('docs', {'term': {'path.root': sign('/data')}}, source_fields=['file.filename']),
        call('folders', {'term': {'path.root': sign('/data')}}, source_fields=['path.real']),
    ]
