"""
Round-robin iteration over every free address of a RangeSet
"""

from typing import Optional, Tuple

from ranges import IPAddress, IPInterface, RangeSet, next_ip


class RangeIterator:
    """Cyclic walk over all ranges of a set, yielding (address, gateway).

    Iteration starts either at the first range's start address, or right
    after ``last_reserved_ip`` when that address still belongs to the set.
    It wraps from the last range back to the first and stops once it comes
    back to where it began, so each address is offered at most once.
    Gateways are skipped. Nothing is reserved here.
    """

    def __init__(self, range_set: RangeSet, last_reserved_ip: Optional[IPAddress] = None):
        self.range_set = range_set
        self.range_index = 0
        self.current_ip: Optional[IPAddress] = None
        self.start_ip: Optional[IPAddress] = None
        self.start_index = 0
        self._done = len(range_set) == 0

        if last_reserved_ip is not None:
            index = range_set.index_of(last_reserved_ip)
            if index is not None:
                self.range_index = index
                self.current_ip = last_reserved_ip

    def __iter__(self):
        return self

    def __next__(self) -> Tuple[IPInterface, IPAddress]:
        # Loop instead of recursing so runs of skipped addresses stay flat
        while not self._done:
            ip = self._advance()
            if ip is None:
                break

            current = self.range_set[self.range_index]
            if ip == current.gateway:
                continue
            return current.with_prefix(ip), current.gateway

        raise StopIteration

    def _advance(self) -> Optional[IPAddress]:
        """Move the cursor one address forward, None once the cycle closes"""
        current = self.range_set[self.range_index]

        if self.current_ip is None:
            self.current_ip = current.start
            self.start_ip = self.current_ip
            self.start_index = self.range_index
            return self.current_ip

        if self.current_ip == current.end:
            self.range_index = (self.range_index + 1) % len(self.range_set)
            self.current_ip = self.range_set[self.range_index].start
        else:
            self.current_ip = next_ip(self.current_ip)

        if self.start_ip is None:
            self.start_ip = self.current_ip
            self.start_index = self.range_index
        elif self.range_index == self.start_index and self.current_ip == self.start_ip:
            self._done = True
            return None

        return self.current_ip
