"""Dialect capabilities model."""

from pydantic import BaseModel, Field


class DialectCapabilities(BaseModel):
    """Flags indicating what a database dialect supports."""

    offset_fetch: bool = Field(
        default=False,
        description="Dialect supports OFFSET ... FETCH NEXT paging",
    )
    offset_fetch_min_version: int = Field(
        default=0,
        ge=0,
        description="Lowest server major version with OFFSET/FETCH support",
    )
    multiple_result_sets: bool = Field(
        default=True,
        description="Batches may return several result sets in one round trip",
    )
    requires_order_for_paging: bool = Field(
        default=False,
        description="Paging clauses need an ORDER BY",
    )
    stored_procedures: bool = Field(
        default=True,
        description="Database supports stored procedures",
    )

    def get_supported_features(self) -> list[str]:
        """Get list of supported feature names."""
        return [
            field_name
            for field_name, value in self.model_dump().items()
            if value is True
        ]
