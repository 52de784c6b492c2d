"""
SQLAlchemy ORM Models for the database-backed reservation store
The (network, ip) primary key is what makes a claim exclusive
"""

from sqlalchemy import Column, String
from sqlalchemy.orm import declarative_base
import ipaddress

Base = declarative_base()


class Reservation(Base):
    """One claimed address, owned by (container_id, ifname)"""

    __tablename__ = "reservations"

    network = Column(String(100), primary_key=True)
    ip = Column(String(45), primary_key=True)
    container_id = Column(String(255), nullable=False, index=True)
    ifname = Column(String(64), nullable=False)
    range_id = Column(String(32), nullable=False)

    def __repr__(self):
        return f"<Reservation {self.ip}: {self.container_id}/{self.ifname}>"

    @property
    def address(self):
        return ipaddress.ip_address(self.ip)


class LastReservedIP(Base):
    """Most recently reserved address per (network, range id)"""

    __tablename__ = "last_reserved_ips"

    network = Column(String(100), primary_key=True)
    range_id = Column(String(32), primary_key=True)
    ip = Column(String(45), nullable=False)

    def __repr__(self):
        return f"<LastReservedIP {self.network}/{self.range_id}: {self.ip}>"
