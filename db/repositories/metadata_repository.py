"""Repository for application metadata (salt, key verification token)."""

from typing import Optional, Any

from db.models.models import AppMetadata, utcnow


class MetadataRepository:
    """Repository for key/value application metadata."""

    def __init__(self, session):
        self.session = session

    def get(self, key: str) -> Optional[AppMetadata]:
        """Get a metadata row by key."""
        return self.session.get(AppMetadata, key)

    def get_value(self, key: str, default: Any = None) -> Any:
        """Get a metadata value, returning default if not found."""
        row = self.get(key)
        return row.value if row else default

    def set_value(self, key: str, value: str) -> AppMetadata:
        """Create or update a metadata value."""
        row = self.get(key)

        if row:
            row.value = value
            row.updated_at = utcnow()
        else:
            row = AppMetadata(key=key, value=value)
            self.session.add(row)

        self.session.flush()
        return row

    def delete(self, key: str) -> bool:
        """Delete a metadata value."""
        result = self.session.query(AppMetadata).filter(AppMetadata.key == key).delete()
        return result > 0
