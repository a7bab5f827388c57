from __future__ import annotations

import pytest

import facetdb_py as facetdb


def test_init_exposes_lazy_exports_via_getattr() -> None:
    assert callable(facetdb.Facet)
    assert callable(facetdb.ensure_table)
    assert callable(facetdb.build_create_table_request)
    assert callable(facetdb.get_dynamodb_client)
    assert facetdb.QueryState.COMPLETED == "COMPLETED"

    for name in facetdb.__all__:
        assert getattr(facetdb, name) is not None

    with pytest.raises(AttributeError):
        _ = facetdb.Table
