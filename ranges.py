"""
Address ranges - validated slices of one subnet, and ordered sets of them
"""

import ipaddress
from typing import Iterator, List, Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

# Largest prefix that still leaves two usable host addresses
MAX_PREFIX = {4: 30, 6: 126}


class RangeError(ValueError):
    """Base class for invalid range definitions"""


class TooSmallNetwork(RangeError):
    def __init__(self, subnet):
        self.subnet = subnet
        super().__init__(f"Network {subnet} too small to allocate from")


class WrongNetworkAddr(RangeError):
    def __init__(self, subnet, network_addr):
        self.subnet = subnet
        self.network_addr = network_addr
        super().__init__(f"Network address of subnet {subnet} should be {network_addr}")


class OutOfRangeIp(RangeError):
    def __init__(self, subnet, ip):
        self.subnet = subnet
        self.ip = ip
        super().__init__(f"IP {ip} is out of network {subnet}")


class InvertedRange(RangeError):
    def __init__(self, start, end):
        self.start = start
        self.end = end
        super().__init__(f"Range start {start} is after range end {end}")


class RangeSetError(ValueError):
    """Base class for range set failures"""


class DifferentAddressType(RangeSetError):
    def __init__(self):
        super().__init__("range has different address type")


class Overlap(RangeSetError):
    def __init__(self, existing, new):
        self.existing = existing
        self.new = new
        super().__init__(f"subnet {existing} overlaps with subnet {new}")


class NoRangeForIP(RangeSetError):
    def __init__(self, ip):
        self.ip = ip
        super().__init__(f"no range found for ip {ip}")


def next_ip(ip: IPAddress) -> IPAddress:
    """Numeric successor of an address, keeping its family"""
    return ip + 1


def _parse_ip(value) -> Optional[IPAddress]:
    if value is None:
        return None
    return ipaddress.ip_address(str(value))


class Range:
    """A bounded slice of one subnet: start, end and gateway all resolved.

    Omitted bounds are filled in on construction:
    start and gateway default to the first address after the network
    address, end defaults to the address just below the broadcast address.
    """

    __slots__ = ("subnet", "start", "end", "gateway")

    def __init__(self, subnet, start=None, end=None, gateway=None):
        iface = ipaddress.ip_interface(str(subnet))
        network = iface.network

        if network.prefixlen > MAX_PREFIX[network.version]:
            raise TooSmallNetwork(network)

        if iface.ip != network.network_address:
            raise WrongNetworkAddr(iface, network.network_address)

        self.subnet: IPNetwork = network
        self.gateway: IPAddress = self._resolve(gateway, network.network_address + 1)
        self.start: IPAddress = self._resolve(start, network.network_address + 1)
        self.end: IPAddress = self._resolve(end, network.broadcast_address - 1)

        if self.start > self.end:
            raise InvertedRange(self.start, self.end)

    def _resolve(self, value, default: IPAddress) -> IPAddress:
        ip = _parse_ip(value)
        if ip is None:
            return default
        if not self._in_subnet(ip):
            raise OutOfRangeIp(self.subnet, ip)
        return ip

    def _in_subnet(self, ip: IPAddress) -> bool:
        return ip.version == self.subnet.version and ip in self.subnet

    @property
    def version(self) -> int:
        return self.subnet.version

    @property
    def prefixlen(self) -> int:
        return self.subnet.prefixlen

    def with_prefix(self, ip: IPAddress) -> IPInterface:
        """Address paired with this range's prefix length"""
        return ipaddress.ip_interface(f"{ip}/{self.subnet.prefixlen}")

    def contains(self, ip) -> bool:
        """Check if ip is inside the subnet and between start and end"""
        ip = _parse_ip(ip)
        if not self._in_subnet(ip):
            return False
        return self.start <= ip <= self.end

    def __contains__(self, ip) -> bool:
        return self.contains(ip)

    def is_same_family(self, other: "Range") -> bool:
        return self.version == other.version

    def overlaps(self, other: "Range") -> bool:
        if not self.is_same_family(other):
            return False

        return (
            self.contains(other.start)
            or self.contains(other.end)
            or other.contains(self.start)
            or other.contains(self.end)
        )

    def iter_free(self) -> Iterator[IPInterface]:
        """Yield every allocatable address from start to end, gateway excluded.

        Each call starts a fresh scan. This walks address by address, which
        is fine for IPv4 but impractical for large IPv6 ranges.
        """
        ip = self.start
        while ip <= self.end:
            if ip != self.gateway:
                yield self.with_prefix(ip)
            ip = next_ip(ip)

    def size(self) -> int:
        """Number of allocatable addresses (gateway excluded)"""
        total = int(self.end) - int(self.start) + 1
        if self.start <= self.gateway <= self.end:
            total -= 1
        return total

    def _key(self):
        return (self.subnet, self.start, self.end, self.gateway)

    def __eq__(self, other):
        if not isinstance(other, Range):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def __str__(self):
        return f"({self.start}, {self.end})"

    def __repr__(self):
        return f"<Range {self.subnet}: {self.start}-{self.end} gw {self.gateway}>"


class RangeSet:
    """Ordered, non-overlapping ranges of one address family"""

    def __init__(self, ranges=None):
        self._ranges: List[Range] = []
        for r in ranges or ():
            self.add(r)

    def add(self, new_range: Range):
        if self._ranges:
            if not self._ranges[0].is_same_family(new_range):
                raise DifferentAddressType()

            for r in self._ranges:
                if r.overlaps(new_range):
                    raise Overlap(r, new_range)

        self._ranges.append(new_range)

    def get_range_for_ip(self, ip) -> Range:
        ip = _parse_ip(ip)
        for r in self._ranges:
            if r.contains(ip):
                return r
        raise NoRangeForIP(ip)

    def contains(self, ip) -> bool:
        return any(r.contains(ip) for r in self._ranges)

    def __contains__(self, ip) -> bool:
        return self.contains(ip)

    def index_of(self, ip) -> Optional[int]:
        """Position of the range holding ip, or None"""
        for index, r in enumerate(self._ranges):
            if r.contains(ip):
                return index
        return None

    def overlaps(self, other: "RangeSet") -> bool:
        return any(a.overlaps(b) for a in self._ranges for b in other)

    @property
    def version(self) -> Optional[int]:
        return self._ranges[0].version if self._ranges else None

    def __getitem__(self, index: int) -> Range:
        return self._ranges[index]

    def __len__(self):
        return len(self._ranges)

    def __iter__(self):
        return iter(self._ranges)

    def __repr__(self):
        return f"<RangeSet {', '.join(str(r) for r in self._ranges)}>"
