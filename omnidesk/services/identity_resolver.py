"""Identity resolver: external sender identity to an organization's Contact."""

from typing import Optional

from omnidesk.infra.errors import NotFoundError
from omnidesk.infra.logging import get_logger
from omnidesk.models.entities import CONTACT_IDENTIFIER_FIELDS, Contact
from omnidesk.store.base import HelpdeskStore

logger = get_logger(__name__)


class IdentityResolver:
    """Find-or-create contacts keyed by a single channel identifier."""

    def __init__(self, store: HelpdeskStore):
        self.store = store

    def resolve_or_create(
        self,
        organization_id: str,
        channel_key_field: str,
        channel_key_value: str,
        display_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Contact:
        """
        Return the contact owning (organization_id, channel_key_field = channel_key_value).

        Existing contacts are returned untouched, display name included. A new
        contact gets only this identifier populated. When a concurrent delivery
        wins the insert, the unique constraint rejects ours and the winner's
        row is read back instead.
        """
        if channel_key_field not in CONTACT_IDENTIFIER_FIELDS:
            raise ValueError(f"Unsupported contact identifier field: {channel_key_field}")
        if not channel_key_value:
            raise ValueError("Contact identifier value is required")

        existing = self.store.find_contact(organization_id, channel_key_field, channel_key_value)
        if existing:
            return existing

        created = self.store.insert_contact(
            organization_id,
            channel_key_field,
            channel_key_value,
            name=display_name,
            phone=phone,
        )
        if created:
            logger.info(
                "Created contact",
                extra={
                    "organization_id": organization_id,
                    "contact_id": created.id,
                    "identifier_field": channel_key_field,
                },
            )
            return created

        # Lost the race against a concurrent insert for the same identifier
        winner = self.store.find_contact(organization_id, channel_key_field, channel_key_value)
        if winner is None:
            raise NotFoundError(
                f"Contact insert for {channel_key_field} conflicted but no row could be read back"
            )
        logger.debug(
            "Contact created concurrently, reusing",
            extra={"organization_id": organization_id, "contact_id": winner.id},
        )
        return winner
