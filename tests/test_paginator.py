"""
Tests for page position tracking.
"""

import pytest

from records.paginator import DEFAULT_PAGE_SIZE, PAGE_SIZES, Paginator
from records.resources import PageSpec


class TestPaginator:

    def test_defaults(self):
        pager = Paginator()
        assert pager.page_size == DEFAULT_PAGE_SIZE == 20
        assert pager.offset == 0
        assert pager.spec == PageSpec(count=20, offset=0)

    def test_advance_and_retreat(self):
        pager = Paginator(page_size=30).advance().advance()
        assert pager.offset == 60
        assert pager.retreat().offset == 30

    def test_retreat_at_start_stays_at_zero(self):
        assert Paginator().retreat().offset == 0
        assert Paginator(page_size=20, offset=10).retreat().offset == 0

    def test_transitions_return_new_instances(self):
        pager = Paginator()
        advanced = pager.advance()
        assert pager.offset == 0
        assert advanced is not pager

    def test_negative_offset_clamped(self):
        assert Paginator(offset=-40).offset == 0
        assert Paginator().go_to(-5).offset == 0

    def test_go_to(self):
        assert Paginator().go_to(140).spec.to_params() == {'_count': 20, '_offset': 140}

    @pytest.mark.parametrize('size', PAGE_SIZES)
    def test_set_page_size_keeps_offset(self, size):
        pager = Paginator(offset=40).set_page_size(size)
        assert pager.page_size == size
        assert pager.offset == 40

    @pytest.mark.parametrize('size', [0, 10, 25, 100])
    def test_set_page_size_rejects_unoffered_sizes(self, size):
        with pytest.raises(ValueError):
            Paginator().set_page_size(size)

    def test_non_positive_page_size_rejected(self):
        with pytest.raises(ValueError):
            Paginator(page_size=0)

    def test_neighbour_offsets(self):
        pager = Paginator(page_size=40, offset=40)
        assert pager.next_offset == 80
        assert pager.previous_offset == 0
        assert Paginator(page_size=40, offset=20).previous_offset == 0
