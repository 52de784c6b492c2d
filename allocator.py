"""
IP Allocator - Round-Robin with Exclusive Claims
Ties a RangeSet to a Store: RangeSet -> RangeIterator -> Store.reserve
"""

import ipaddress
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from rangeiter import RangeIterator
from ranges import IPAddress, IPInterface, NoRangeForIP, RangeSet, RangeSetError
from store import LastReservedIPNotFound, Store, StoreError

LOG = logging.getLogger(__name__)


@dataclass
class IpConfig:
    """Allocation result: address with its range's prefix, plus gateway"""

    address: IPInterface
    gateway: IPAddress
    interface: Optional[int] = None

    @property
    def version(self) -> str:
        return str(self.address.version)

    def to_dict(self):
        result = {
            "version": self.version,
            "address": str(self.address),
            "gateway": str(self.gateway),
        }
        if self.interface is not None:
            result["interface"] = self.interface
        return result


class AllocateError(Exception):
    """Base class for allocation failures"""


class GatewayIp(AllocateError):
    def __init__(self, ip):
        self.ip = ip
        super().__init__(f"requested ip {ip} is gateway's ip")


class RangeSetFailure(AllocateError):
    def __init__(self, err: RangeSetError):
        self.err = err
        super().__init__(str(err))


class StoreFailure(AllocateError):
    def __init__(self, err: StoreError):
        self.err = err
        super().__init__(str(err))


class IpNotAvailable(AllocateError):
    def __init__(self, ip):
        self.ip = ip
        super().__init__(f"requested ip {ip} is not available")


class DuplicateAllocation(AllocateError):
    def __init__(self, ip, id):
        self.ip = ip
        self.id = id
        super().__init__(
            f"{ip} has been allocated to {id}, duplicate allocation is not allowed"
        )


class IpExhausted(AllocateError):
    def __init__(self):
        super().__init__("ip addresses are exhausted")


class Allocator:
    """Hands out addresses of one RangeSet, recording claims in a Store.

    range_id partitions the store's last-reserved marker so several
    allocators can share one store.
    """

    def __init__(self, range_set: RangeSet, store: Store, range_id: int = 0):
        self.range_set = range_set
        self.store = store
        self.range_id = str(range_id)

    @contextmanager
    def _locked(self):
        try:
            self.store.lock()
        except StoreError as e:
            raise StoreFailure(e) from e
        try:
            yield
        except BaseException:
            # the error already in flight wins over an unlock failure
            try:
                self.store.unlock()
            except StoreError as e:
                LOG.warning("Failed to unlock store: %s", e)
            raise

        try:
            self.store.unlock()
        except StoreError as e:
            raise StoreFailure(e) from e

    def get(self, id: str, ifname: str, requested_ip=None) -> IpConfig:
        with self._locked():
            try:
                if requested_ip is not None:
                    return self._get_requested(id, ifname, requested_ip)
                return self._get_next(id, ifname)
            except StoreError as e:
                raise StoreFailure(e) from e

    def _get_requested(self, id: str, ifname: str, requested_ip) -> IpConfig:
        try:
            ip = ipaddress.ip_address(str(requested_ip))
        except ValueError as e:
            raise RangeSetFailure(NoRangeForIP(requested_ip)) from e

        try:
            owner = self.range_set.get_range_for_ip(ip)
        except RangeSetError as e:
            raise RangeSetFailure(e) from e

        if ip == owner.gateway:
            raise GatewayIp(ip)

        if not self.store.reserve(id, ifname, ip, self.range_id):
            raise IpNotAvailable(ip)

        LOG.info("Reserved requested ip %s for %s/%s", ip, id, ifname)
        return IpConfig(address=owner.with_prefix(ip), gateway=owner.gateway)

    def _get_next(self, id: str, ifname: str) -> IpConfig:
        # A recorded ip outside every range means the config changed under us
        for ip in self.store.get_by_id(id, ifname):
            if not self.range_set.contains(ip):
                raise DuplicateAllocation(ip, id)

        for address, gateway in self.iter_candidates():
            if self.store.reserve(id, ifname, address.ip, self.range_id):
                LOG.info("Reserved %s for %s/%s", address, id, ifname)
                return IpConfig(address=address, gateway=gateway)
            LOG.debug("%s is taken, trying next", address.ip)

        raise IpExhausted()

    def iter_candidates(self) -> RangeIterator:
        """Candidates starting right after the last reserved ip, if still valid"""
        try:
            last_reserved_ip = self.store.last_reserved_ip(self.range_id)
        except LastReservedIPNotFound:
            last_reserved_ip = None
        return RangeIterator(self.range_set, last_reserved_ip)

    def release(self, id: str, ifname: str):
        with self._locked():
            try:
                self.store.release_by_id(id, ifname)
            except StoreError as e:
                raise StoreFailure(e) from e
        LOG.info("Released addresses of %s/%s", id, ifname)
