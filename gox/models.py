"""
Data models for gox.

Server descriptors are persisted with Peewee ORM on SQLite. The supervisor
never touches the ORM rows directly: it works on immutable ServerDescriptor
snapshots taken from the registry.
"""

import os
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from peewee import (
    BooleanField,
    CharField,
    DatabaseProxy,
    DateTimeField,
    IntegerField,
    Model,
    SqliteDatabase,
)

from .config import config

database = DatabaseProxy()

PROTOCOLS = ("vmess", "vless", "trojan", "shadowsocks")


def initialize_db(path=None):
    """Initialize database connection and create tables."""
    db_path = str(path or config.db_path)
    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    db = SqliteDatabase(
        db_path,
        pragmas={
            "journal_mode": "wal",
            "foreign_keys": 1,
            "busy_timeout": 5000,
        },
    )
    database.initialize(db)
    database.create_tables([Server], safe=True)
    return db


@dataclass(frozen=True)
class ServerDescriptor:
    """Connection parameters of one remote proxy server."""

    id: str
    name: str
    protocol: str
    address: str
    port: int
    uuid: str = ""
    password: str = ""
    method: str = ""
    network: str = ""
    path: str = ""
    host: str = ""
    tls: bool = False
    sni: str = ""
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created"] = self.created.isoformat() if self.created else None
        data["updated"] = self.updated.isoformat() if self.updated else None
        return data


class BaseModel(Model):
    """Base model with common configuration."""

    class Meta:
        database = database


class Server(BaseModel):
    """A stored server descriptor."""

    id = CharField(primary_key=True)
    name = CharField(unique=True, index=True)
    protocol = CharField()
    address = CharField()
    port = IntegerField()
    uuid = CharField(default="")
    password = CharField(default="")
    method = CharField(default="")
    network = CharField(default="")
    path = CharField(default="")
    host = CharField(default="")
    tls = BooleanField(default=False)
    sni = CharField(default="")
    created_at = DateTimeField(default=datetime.now)
    updated_at = DateTimeField(default=datetime.now)

    class Meta:
        table_name = "servers"

    def save(self, *args, **kwargs):
        self.updated_at = datetime.now()
        return super().save(*args, **kwargs)

    def to_descriptor(self) -> ServerDescriptor:
        return ServerDescriptor(
            id=self.id,
            name=self.name,
            protocol=self.protocol,
            address=self.address,
            port=self.port,
            uuid=self.uuid or "",
            password=self.password or "",
            method=self.method or "",
            network=self.network or "",
            path=self.path or "",
            host=self.host or "",
            tls=bool(self.tls),
            sni=self.sni or "",
            created=self.created_at,
            updated=self.updated_at,
        )
