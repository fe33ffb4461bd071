"""Typed views of the nodes kept in the realtime tree."""

from invoicehub.models.base import StoreModel  # noqa: F401

from invoicehub.models.invoice import Invoice, Attachment, CustomField, LineItem  # noqa: F401
from invoicehub.models.activity import ActivityLogEntry  # noqa: F401
from invoicehub.models.organization import Organization, Member  # noqa: F401
from invoicehub.models.user import User  # noqa: F401
from invoicehub.models.notification import Notification  # noqa: F401
