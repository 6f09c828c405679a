"""Tests for package exports."""

import restcache


def test_public_api_available() -> None:
    """Test that the cache client and its building blocks are importable."""
    from restcache import (
        Entity,
        FetchCoordinator,
        HttpxTransport,
        Resource,
        RestCache,
        make_schema_selector,
        normalize,
        reduce,
    )

    # Just verify they're importable
    assert RestCache is not None
    assert Resource is not None
    assert Entity is not None
    assert FetchCoordinator is not None
    assert HttpxTransport is not None
    assert make_schema_selector is not None
    assert normalize is not None
    assert reduce is not None


def test_all_names_resolve() -> None:
    for name in restcache.__all__:
        assert getattr(restcache, name) is not None


def test_version() -> None:
    assert restcache.__version__ == "0.1.0"
