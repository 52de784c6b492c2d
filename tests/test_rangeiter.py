"""
Unit tests for the round-robin range iterator.
"""

import ipaddress

import pytest

from rangeiter import RangeIterator
from ranges import Range, RangeSet


def ip(value):
    return ipaddress.ip_address(value)


def addresses(iterator):
    return [str(address.ip) for address, _ in iterator]


def two_ranges():
    return RangeSet(
        [
            Range("10.1.0.0/24", "10.1.0.1", "10.1.0.3", "10.1.0.1"),
            Range("10.1.0.0/24", "10.1.0.10", "10.1.0.12", "10.1.0.10"),
        ]
    )


@pytest.mark.unit
def test_single_range_skips_gateway_then_stops():
    ranges = RangeSet([Range("10.1.0.0/16", "10.1.0.1", "10.1.0.5", "10.1.0.4")])
    ri = RangeIterator(ranges)

    address, gateway = next(ri)
    assert address.ip == ip("10.1.0.1")
    assert address.network.prefixlen == 16
    assert gateway == ip("10.1.0.4")

    assert [str(a.ip) for a, _ in (next(ri), next(ri))] == ["10.1.0.2", "10.1.0.3"]

    address, gateway = next(ri)
    assert address.ip == ip("10.1.0.5")
    assert gateway == ip("10.1.0.4")

    with pytest.raises(StopIteration):
        next(ri)
    with pytest.raises(StopIteration):
        next(ri)


@pytest.mark.unit
def test_walks_ranges_in_order():
    assert addresses(RangeIterator(two_ranges())) == [
        "10.1.0.2",
        "10.1.0.3",
        "10.1.0.11",
        "10.1.0.12",
    ]


@pytest.mark.unit
def test_yields_gateway_of_owning_range():
    gateways = {str(a.ip): str(gw) for a, gw in RangeIterator(two_ranges())}

    assert gateways == {
        "10.1.0.2": "10.1.0.1",
        "10.1.0.3": "10.1.0.1",
        "10.1.0.11": "10.1.0.10",
        "10.1.0.12": "10.1.0.10",
    }


@pytest.mark.unit
@pytest.mark.parametrize(
    "last,expected",
    [
        ("10.1.0.3", ["10.1.0.11", "10.1.0.12", "10.1.0.2", "10.1.0.3"]),
        ("10.1.0.12", ["10.1.0.2", "10.1.0.3", "10.1.0.11", "10.1.0.12"]),
        ("10.1.0.2", ["10.1.0.3", "10.1.0.11", "10.1.0.12", "10.1.0.2"]),
    ],
)
def test_resumes_after_last_reserved(last, expected):
    assert addresses(RangeIterator(two_ranges(), ip(last))) == expected


@pytest.mark.unit
def test_last_reserved_outside_ranges_starts_fresh():
    fresh = addresses(RangeIterator(two_ranges()))

    assert addresses(RangeIterator(two_ranges(), ip("10.1.0.99"))) == fresh
    assert addresses(RangeIterator(two_ranges(), ip("2001:db8::5"))) == fresh


@pytest.mark.unit
def test_visits_every_address_once():
    ranges = RangeSet(
        [
            Range("10.2.0.0/24", "10.2.0.1", "10.2.0.60", "10.2.0.30"),
            Range("10.3.0.0/24"),
            Range("10.4.0.0/28"),
        ]
    )
    expected = sorted(a.ip for r in ranges for a in r.iter_free())

    for last in (None, ip("10.2.0.17"), ip("10.3.0.254"), ip("10.4.0.14")):
        seen = [a.ip for a, _ in RangeIterator(ranges, last)]
        assert len(seen) == len(set(seen))
        assert sorted(seen) == expected


@pytest.mark.unit
def test_empty_range_set():
    assert list(RangeIterator(RangeSet())) == []


@pytest.mark.unit
def test_range_holding_only_its_gateway():
    ranges = RangeSet([Range("10.0.0.0/30", "10.0.0.1", "10.0.0.1", "10.0.0.1")])

    assert list(RangeIterator(ranges)) == []
    assert list(RangeIterator(ranges, ip("10.0.0.1"))) == []


@pytest.mark.unit
def test_carries_across_octet_boundary():
    ranges = RangeSet([Range("10.1.0.0/16", "10.1.0.254", "10.1.1.1")])

    assert addresses(RangeIterator(ranges)) == [
        "10.1.0.254",
        "10.1.0.255",
        "10.1.1.0",
        "10.1.1.1",
    ]


@pytest.mark.unit
def test_ipv6_carries_across_byte_boundary():
    ranges = RangeSet(
        [Range("2001:db8::/64", "2001:db8::fe", "2001:db8::101", "2001:db8::1")]
    )
    result = list(RangeIterator(ranges))

    assert [str(a) for a, _ in result] == [
        "2001:db8::fe/64",
        "2001:db8::ff/64",
        "2001:db8::100/64",
        "2001:db8::101/64",
    ]
    assert all(gw == ip("2001:db8::1") for _, gw in result)


@pytest.mark.unit
def test_ipv6_large_range_is_lazy():
    ranges = RangeSet([Range("2001:db8::/64")])
    ri = RangeIterator(ranges, ip("2001:db8::ffff:ffff:ffff:fffd"))

    assert [str(next(ri)[0].ip) for _ in range(3)] == [
        "2001:db8::ffff:ffff:ffff:fffe",
        "2001:db8::2",
        "2001:db8::3",
    ]
