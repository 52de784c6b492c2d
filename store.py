"""
Reservation stores - durable ledger of which address belongs to which
(container id, interface) pair

Every store guarantees that at most one reserve() call succeeds per
address, even across processes.
"""

import fcntl
import ipaddress
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import sqlalchemy
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from models import Base, LastReservedIP, Reservation
from ranges import IPAddress

LOG = logging.getLogger(__name__)

LAST_IP_FILE_PREFIX = "last_reserved_ip."
DEFAULT_DATA_DIR = "/var/lib/cni/networks"
LINE_BREAK = "\r\n"
LOCK_FILE = "lock"


class StoreError(Exception):
    """Base class for reservation store failures"""


class StoreIOError(StoreError):
    def __init__(self, err):
        self.err = err
        super().__init__(f"io error happened: {err}")


class StoreParseError(StoreError):
    def __init__(self, value, source):
        self.value = value
        self.source = source
        super().__init__(f"cannot parse {value!r} from {source} as an ip address")


class LastReservedIPNotFound(StoreError):
    def __init__(self, range_id):
        self.range_id = range_id
        super().__init__(f"no last reserved ip recorded for range {range_id}")


@dataclass(frozen=True)
class ReservationRecord:
    ip: IPAddress
    container_id: str
    ifname: str


def _parse_ip(value: str, source: str) -> IPAddress:
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError as e:
        raise StoreParseError(value, source) from e


class Store(ABC):
    """Contract every reservation backend implements.

    lock()/unlock() bracket a whole get-or-release sequence; correctness of
    a single claim never depends on them. A store is also a context
    manager that holds the lock for the duration of the block.
    """

    @abstractmethod
    def lock(self) -> None:
        pass

    @abstractmethod
    def unlock(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def reserve(self, id: str, ifname: str, ip: IPAddress, range_id: str) -> bool:
        """Claim ip for (id, ifname).

        Returns False when anyone, including the same owner, already holds
        it. On success ip also becomes the last reserved ip of range_id.
        """

    @abstractmethod
    def last_reserved_ip(self, range_id: str) -> IPAddress:
        """Raises LastReservedIPNotFound when nothing is recorded"""

    @abstractmethod
    def release(self, ip: IPAddress) -> None:
        """Drop the claim on ip; releasing an unclaimed ip is a no-op"""

    @abstractmethod
    def list_reservations(self) -> List[ReservationRecord]:
        pass

    def get_by_id(self, id: str, ifname: str) -> List[IPAddress]:
        return [
            r.ip
            for r in self.list_reservations()
            if r.container_id == id and r.ifname == ifname
        ]

    def release_by_id(self, id: str, ifname: str) -> None:
        for ip in self.get_by_id(id, ifname):
            self.release(ip)

    def __enter__(self):
        self.lock()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unlock()
        return False


class FileStore(Store):
    """One file per claimed address under <data_dir>/<network>.

    Claiming is an exclusive create of the file named after the address, so
    the filesystem arbitrates concurrent claims. File content is the owner
    id and interface name separated by a CRLF.
    """

    def __init__(self, network: str, data_dir: Optional[str] = None):
        self.data_dir = Path(data_dir or DEFAULT_DATA_DIR) / network
        self._lock_fd: Optional[int] = None

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIOError(e) from e

    def _ip_path(self, ip: IPAddress) -> Path:
        return self.data_dir / str(ip)

    def _last_ip_path(self, range_id: str) -> Path:
        return self.data_dir / f"{LAST_IP_FILE_PREFIX}{range_id}"

    def lock(self):
        try:
            if self._lock_fd is None:
                self._lock_fd = os.open(
                    self.data_dir / LOCK_FILE, os.O_RDWR | os.O_CREAT, 0o644
                )
            fcntl.flock(self._lock_fd, fcntl.LOCK_EX)
        except OSError as e:
            raise StoreIOError(e) from e

    def unlock(self):
        if self._lock_fd is None:
            return
        try:
            fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
        except OSError as e:
            raise StoreIOError(e) from e

    def close(self):
        if self._lock_fd is None:
            return
        fd, self._lock_fd = self._lock_fd, None
        try:
            os.close(fd)
        except OSError as e:
            raise StoreIOError(e) from e

    def reserve(self, id, ifname, ip, range_id):
        path = self._ip_path(ip)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise StoreIOError(e) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(f"{id}{LINE_BREAK}{ifname}")
                f.flush()
                os.fsync(f.fileno())
            self._write_last_reserved(range_id, ip)
        except OSError as e:
            # Never leave a half-written claim behind
            path.unlink(missing_ok=True)
            raise StoreIOError(e) from e

        LOG.debug("Claimed %s for %s/%s in %s", ip, id, ifname, self.data_dir)
        return True

    def _write_last_reserved(self, range_id: str, ip: IPAddress):
        path = self._last_ip_path(range_id)
        tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(self.data_dir))
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                f.write(str(ip))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        finally:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass

    def last_reserved_ip(self, range_id):
        path = self._last_ip_path(range_id)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise LastReservedIPNotFound(range_id) from e
        except OSError as e:
            raise StoreIOError(e) from e
        return _parse_ip(content, str(path))

    def release(self, ip):
        try:
            self._ip_path(ip).unlink(missing_ok=True)
        except OSError as e:
            raise StoreIOError(e) from e

    def list_reservations(self):
        records = []
        try:
            with os.scandir(self.data_dir) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            raise StoreIOError(e) from e

        for entry in entries:
            # Lock, marker and temp files are not addresses
            try:
                ip = ipaddress.ip_address(entry.name)
            except ValueError:
                continue

            try:
                content = Path(entry.path).read_text(encoding="utf-8")
            except FileNotFoundError:
                # released while scanning
                continue
            except OSError as e:
                raise StoreIOError(e) from e

            lines = content.strip().splitlines()
            container_id = lines[0].strip() if lines else ""
            ifname = lines[1].strip() if len(lines) > 1 else ""
            records.append(ReservationRecord(ip, container_id, ifname))

        return records


class MemoryStore(Store):
    """Process-local store, for tests and dry runs"""

    def __init__(self):
        self._claims: Dict[IPAddress, ReservationRecord] = {}
        self._last: Dict[str, IPAddress] = {}
        self._mutex = threading.RLock()
        self._held = threading.local()
        self._guard = threading.Lock()

    def lock(self):
        self._mutex.acquire()
        self._held.depth = getattr(self._held, "depth", 0) + 1

    def unlock(self):
        # only the thread holding the lock may release it
        depth = getattr(self._held, "depth", 0)
        if depth == 0:
            return
        self._held.depth = depth - 1
        self._mutex.release()

    def close(self):
        pass

    def reserve(self, id, ifname, ip, range_id):
        with self._guard:
            if ip in self._claims:
                return False
            self._claims[ip] = ReservationRecord(ip, id, ifname)
            self._last[range_id] = ip
        return True

    def last_reserved_ip(self, range_id):
        try:
            return self._last[range_id]
        except KeyError as e:
            raise LastReservedIPNotFound(range_id) from e

    def release(self, ip):
        with self._guard:
            self._claims.pop(ip, None)

    def list_reservations(self):
        with self._guard:
            return sorted(self._claims.values(), key=lambda r: (r.ip.version, r.ip))


class SQLStore(Store):
    """Reservations as rows; the (network, ip) primary key makes claims exclusive"""

    def __init__(self, network: str, url: str, engine=None):
        self.network = network
        try:
            self.engine = engine or sqlalchemy.create_engine(url)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreIOError(e) from e
        self.Session = sessionmaker(bind=self.engine)

    def session(self):
        return self.Session()

    def lock(self):
        pass

    def unlock(self):
        pass

    def close(self):
        self.engine.dispose()

    def reserve(self, id, ifname, ip, range_id):
        with self.session() as session:
            try:
                session.add(
                    Reservation(
                        network=self.network,
                        ip=str(ip),
                        container_id=id,
                        ifname=ifname,
                        range_id=str(range_id),
                    )
                )
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreIOError(e) from e

            try:
                self._set_last_reserved(session, range_id, ip)
            except StoreIOError:
                # Never leave a claim behind for a reservation reported as failed
                self._delete(ip=str(ip))
                raise

        LOG.debug("Claimed %s for %s/%s in network %s", ip, id, ifname, self.network)
        return True

    def _set_last_reserved(self, session, range_id, ip):
        marker = LastReservedIP(network=self.network, range_id=str(range_id), ip=str(ip))
        try:
            session.merge(marker)
            session.commit()
        except IntegrityError:
            # Another process inserted the marker first; update it instead
            session.rollback()
            try:
                session.merge(marker)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreIOError(e) from e
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreIOError(e) from e

    def last_reserved_ip(self, range_id):
        try:
            with self.session() as session:
                marker = session.get(LastReservedIP, (self.network, str(range_id)))
                value = marker.ip if marker else None
        except SQLAlchemyError as e:
            raise StoreIOError(e) from e

        if value is None:
            raise LastReservedIPNotFound(range_id)
        return _parse_ip(value, f"{LastReservedIP.__tablename__}[{range_id}]")

    def release(self, ip):
        self._delete(ip=str(ip))

    def release_by_id(self, id, ifname):
        self._delete(container_id=id, ifname=ifname)

    def _delete(self, **criteria):
        with self.session() as session:
            try:
                session.query(Reservation).filter_by(
                    network=self.network, **criteria
                ).delete()
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreIOError(e) from e

    def get_by_id(self, id, ifname):
        return [
            r.ip for r in self._query(container_id=id, ifname=ifname)
        ]

    def list_reservations(self):
        return self._query()

    def _query(self, **criteria) -> List[ReservationRecord]:
        try:
            with self.session() as session:
                rows = (
                    session.query(Reservation)
                    .filter_by(network=self.network, **criteria)
                    .all()
                )
                raw = [(r.ip, r.container_id, r.ifname) for r in rows]
        except SQLAlchemyError as e:
            raise StoreIOError(e) from e

        records = [
            ReservationRecord(_parse_ip(ip, Reservation.__tablename__), cid, ifname)
            for ip, cid, ifname in raw
        ]
        return sorted(records, key=lambda r: (r.ip.version, r.ip))
