# invoicehub/services/invoice_repository.py
from typing import Any, Callable, Optional

from pydantic import ValidationError
import structlog

from invoicehub.exceptions import StoreError
from invoicehub.models.base import encode_fields
from invoicehub.models.invoice import Invoice
from invoicehub.paths import invoice_path, invoices_path
from invoicehub.services.realtime_db import RealtimeDB
from invoicehub.services.tree_store import Subscription

logger = structlog.get_logger()

# Server-managed keys; never taken from the caller's model on write
_MANAGED = {"id", "organization_id", "created_at", "updated_at"}


class InvoiceRepository:
    """Typed access to ``organizations/{org}/invoices``.

    ``organization_id`` always comes from the path, on read and on write.
    """

    def __init__(self, db: RealtimeDB):
        self.db = db

    def new_id(self, organization_id: str) -> str:
        return self.db.new_key(invoices_path(organization_id))

    def decode(self, organization_id: str, invoice_id: str, node: Any) -> Invoice:
        return Invoice.from_node(node, id=invoice_id, organization_id=organization_id)

    def decode_many(self, organization_id: str, nodes: Any) -> list[Invoice]:
        """Decode a collection node, skipping entries that cannot be read."""
        if isinstance(nodes, list):
            items = [(str(i), n) for i, n in enumerate(nodes) if n is not None]
        elif isinstance(nodes, dict):
            items = sorted(nodes.items())
        else:
            return []

        invoices = []
        for key, node in items:
            if not isinstance(node, dict):
                continue
            try:
                invoices.append(self.decode(organization_id, key, node))
            except ValidationError as e:
                logger.warning(
                    "invoice_decode_failed",
                    organization_id=organization_id,
                    invoice_id=key,
                    error=str(e),
                )
        return invoices

    async def get(self, organization_id: str, invoice_id: str) -> Optional[Invoice]:
        path = invoice_path(organization_id, invoice_id)
        node = await self.db.get_data(path)
        if node is None:
            return None
        try:
            return self.decode(organization_id, invoice_id, node)
        except (TypeError, ValueError) as e:
            logger.error("invoice_decode_failed", path=path, error=str(e))
            raise StoreError("decode", path, "stored invoice is unreadable") from e

    async def list(self, organization_id: str) -> list[Invoice]:
        nodes = await self.db.get_data(invoices_path(organization_id))
        return self.decode_many(organization_id, nodes)

    async def create(
        self, organization_id: str, invoice: Invoice, invoice_id: Optional[str] = None
    ) -> Invoice:
        """Write a new invoice under ``invoice_id`` (or a generated key)."""
        node = invoice.to_node(exclude=_MANAGED)
        node["organizationId"] = organization_id
        if invoice_id is None:
            invoice_id, stored = await self.db.create_item(invoices_path(organization_id), node)
        else:
            stored = await self.db.set_data(
                invoice_path(organization_id, invoice_id), {**node, "id": invoice_id}
            )
        logger.info("invoice_created", organization_id=organization_id, invoice_id=invoice_id)
        return self.decode(organization_id, invoice_id, stored)

    async def replace(self, organization_id: str, invoice_id: str, invoice: Invoice) -> Invoice:
        node = invoice.to_node(exclude=_MANAGED - {"created_at"})
        node.update({"id": invoice_id, "organizationId": organization_id})
        stored = await self.db.set_data(invoice_path(organization_id, invoice_id), node)
        return self.decode(organization_id, invoice_id, stored)

    async def update_fields(
        self, organization_id: str, invoice_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        """Shallow merge of snake_case ``fields``; returns the node keys written."""
        node_fields = encode_fields({k: v for k, v in fields.items() if k not in _MANAGED})
        return await self.db.update_data(invoice_path(organization_id, invoice_id), node_fields)

    async def delete(self, organization_id: str, invoice_id: str) -> None:
        await self.db.delete_data(invoice_path(organization_id, invoice_id))
        logger.info("invoice_deleted", organization_id=organization_id, invoice_id=invoice_id)

    async def subscribe(
        self,
        organization_id: str,
        callback: Callable[[Any], None],
        invoice_id: Optional[str] = None,
    ) -> Subscription:
        """
        Listen to one invoice (callback gets ``Optional[Invoice]``) or to the
        whole collection (callback gets ``list[Invoice]``).
        """
        if invoice_id is not None:
            def _on_value(node):
                callback(None if node is None else self.decode(organization_id, invoice_id, node))

            return await self.db.subscribe(invoice_path(organization_id, invoice_id), _on_value)

        def _on_values(nodes):
            callback(self.decode_many(organization_id, nodes))

        return await self.db.subscribe(invoices_path(organization_id), _on_values)
