"""Store paths and blob keys, in one place so every call site agrees."""

ACTIVITY_NODE = "activity"
LEGACY_ACTIVITY_NODE = "activity_logs"


def organization_path(organization_id: str) -> str:
    return f"organizations/{organization_id}"


def invoices_path(organization_id: str) -> str:
    return f"organizations/{organization_id}/invoices"


def invoice_path(organization_id: str, invoice_id: str) -> str:
    return f"organizations/{organization_id}/invoices/{invoice_id}"


def activity_path(organization_id: str) -> str:
    return f"organizations/{organization_id}/{ACTIVITY_NODE}"


def legacy_activity_path(organization_id: str) -> str:
    return f"organizations/{organization_id}/{LEGACY_ACTIVITY_NODE}"


def members_path(organization_id: str) -> str:
    return f"organizations/{organization_id}/members"


def users_path() -> str:
    return "users"


def user_path(uid: str) -> str:
    return f"users/{uid}"


def notifications_path(uid: str) -> str:
    return f"notifications/{uid}"


def attachments_prefix(organization_id: str, invoice_id: str) -> str:
    return f"organizations/{organization_id}/invoices/{invoice_id}/attachments"


def attachment_key(organization_id: str, invoice_id: str, filename: str) -> str:
    return f"{attachments_prefix(organization_id, invoice_id)}/{filename}"
