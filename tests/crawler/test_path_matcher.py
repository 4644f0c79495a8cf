import pytest

from fs_crawler_elasticsearch.crawler.path_matcher import PathMatcher, is_indexable
from fs_crawler_elasticsearch.exceptions import ConfigurationError


def test_empty_includes_match_everything():
    matcher = PathMatcher([], [])
    assert matcher.is_indexable('/a/b/report.pdf')
    assert matcher.is_indexable('/anything')

def test_include_patterns_filter_files():
    matcher = PathMatcher(['*.pdf', '*.txt'], [])
    assert matcher.is_indexable('/docs/report.pdf')
    assert matcher.is_indexable('/notes.txt')
    assert not matcher.is_indexable('/image.png')

def test_matching_is_case_insensitive():
    matcher = PathMatcher(['*.pdf'], ['*/secret*'])
    assert matcher.is_indexable('/docs/REPORT.PDF')
    assert not matcher.is_indexable('/docs/SECRET.pdf')

def test_excludes_win_over_includes():
    assert not is_indexable('/a/draft.txt', ['*.txt'], ['*/draft*'])

def test_default_exclude_skips_temporary_office_files():
    matcher = PathMatcher([], ['*/~*'])
    assert not matcher.is_indexable('/docs/~$report.docx')
    assert matcher.is_indexable('/docs/report.docx')

def test_directories_not_excluded_are_traversed_even_when_not_included():
    matcher = PathMatcher(['*.pdf'], ['*/private'])
    assert matcher.is_indexable('/projects', is_directory=True)
    assert not matcher.is_indexable('/projects')
    assert not matcher.is_indexable('/private', is_directory=True)

@pytest.mark.parametrize('pattern', ['', '   ', None, 42])
def test_invalid_patterns_fail_at_construction(pattern):
    with pytest.raises(ConfigurationError):
        PathMatcher([pattern], [])
    with pytest.raises(ConfigurationError):
        PathMatcher([], [pattern])
