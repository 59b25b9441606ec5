"""
Server registry.

Stores server descriptors keyed by identity, validates that display names are
unique, and hands out immutable ServerDescriptor snapshots to callers.
"""

import logging
import uuid
from datetime import datetime

from .errors import DuplicateServerName, InvalidServer, ServerNotFound
from .models import PROTOCOLS, Server, ServerDescriptor, database

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "protocol",
    "address",
    "port",
    "uuid",
    "password",
    "method",
    "network",
    "path",
    "host",
    "tls",
    "sni",
)


def validate_fields(data: dict):
    """Check the fields every descriptor needs, regardless of protocol."""
    name = (data.get("name") or "").strip()
    if not name:
        raise InvalidServer("Server name must not be empty")
    if data.get("protocol") not in PROTOCOLS:
        raise InvalidServer(
            f"Unsupported protocol '{data.get('protocol')}', expected one of {', '.join(PROTOCOLS)}"
        )
    if not (data.get("address") or "").strip():
        raise InvalidServer("Server address must not be empty")
    port = data.get("port")
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        raise InvalidServer(f"Port must be between 1 and 65535, got {port!r}")


class ServerRegistry:
    """CRUD access to stored server descriptors."""

    def list_servers(self) -> list[ServerDescriptor]:
        return [s.to_descriptor() for s in Server.select().order_by(Server.name)]

    def get_server(self, server_id: str) -> ServerDescriptor:
        """Get a server by ID. Raises ServerNotFound on a miss."""
        server = Server.get_or_none(Server.id == server_id)
        if not server:
            raise ServerNotFound(f"Server with ID {server_id} not found")
        return server.to_descriptor()

    def get_server_by_name(self, name: str) -> ServerDescriptor:
        server = Server.get_or_none(Server.name == name)
        if not server:
            raise ServerNotFound(f"Server named '{name}' not found")
        return server.to_descriptor()

    def validate_server_name(self, name: str, exclude_id: str = None):
        """Raise DuplicateServerName if another server already uses `name`."""
        query = Server.select().where(Server.name == name)
        if exclude_id:
            query = query.where(Server.id != exclude_id)
        if query.exists():
            raise DuplicateServerName(f"Server name '{name}' already exists")

    def create_server(self, data: dict) -> ServerDescriptor:
        """Register a new server, assigning an ID if none was given."""
        validate_fields(data)
        with database.atomic():
            self.validate_server_name(data["name"])
            server_id = data.get("id") or str(uuid.uuid4())
            if Server.get_or_none(Server.id == server_id):
                raise InvalidServer(f"Server with ID {server_id} already exists")

            now = datetime.now()
            values = {k: data[k] for k in EDITABLE_FIELDS if data.get(k) is not None}
            server = Server.create(id=server_id, created_at=now, updated_at=now, **values)

        logger.info(f"Created server {server.name} ({server.id})")
        return server.to_descriptor()

    def update_server(self, server_id: str, data: dict) -> ServerDescriptor:
        """Update a server. Fields missing from `data` keep their stored value."""
        server = Server.get_or_none(Server.id == server_id)
        if not server:
            raise ServerNotFound(f"Server with ID {server_id} not found")

        merged = {k: getattr(server, k) for k in EDITABLE_FIELDS}
        merged.update({k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None})
        validate_fields(merged)

        with database.atomic():
            self.validate_server_name(merged["name"], exclude_id=server_id)
            for key, value in merged.items():
                setattr(server, key, value)
            server.save()

        logger.info(f"Updated server {server.name} ({server.id})")
        return server.to_descriptor()

    def delete_server(self, server_id: str):
        deleted = Server.delete().where(Server.id == server_id).execute()
        if not deleted:
            raise ServerNotFound(f"Server with ID {server_id} not found")
        logger.info(f"Deleted server {server_id}")

    def remove_server(self, name: str):
        """Delete a server by display name."""
        self.delete_server(self.get_server_by_name(name).id)
