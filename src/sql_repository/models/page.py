"""Paging request and result models."""

from typing import Any, Union

from pydantic import BaseModel, Field

from sql_repository.models.table import DataTable


class PageRequest(BaseModel):
    """A query to be split into a count statement and one page of rows."""

    sql: str = Field(..., description="Base SQL statement, or a CTE prologue named T")
    parameters: Any = Field(None, description="Parameters bound into the statement")
    use_cte: bool = Field(
        default=False,
        description="Whether sql is a common-table-expression prologue",
    )
    order_field: str = Field(default="", description="ORDER BY expression")
    ascending: bool = Field(default=True, description="Sort direction")
    page_size: int = Field(..., gt=0, description="Rows per page")
    page_index: int = Field(..., ge=1, description="1-based page number")

    model_config = {"arbitrary_types_allowed": True}

    @property
    def offset(self) -> int:
        """Rows skipped before this page."""
        return self.page_size * (self.page_index - 1)

    @property
    def row_start(self) -> int:
        """1-based number of the first row on this page."""
        return self.offset + 1

    @property
    def row_end(self) -> int:
        """1-based number of the last row on this page."""
        return self.page_size * self.page_index


class PageResult(BaseModel):
    """One page of rows plus the total number of matching rows."""

    rows: Union[DataTable, list[Any]] = Field(
        default_factory=list, description="Rows of the requested page"
    )
    total: int = Field(default=0, description="Row count of the unpaginated query")

    model_config = {"arbitrary_types_allowed": True}

    @property
    def row_count(self) -> int:
        """Number of rows on this page."""
        if isinstance(self.rows, DataTable):
            return self.rows.row_count
        return len(self.rows)

    def page_count(self, page_size: int) -> int:
        """Number of pages needed for the total at the given page size."""
        if page_size < 1:
            raise ValueError("page_size must be positive")
        return (self.total + page_size - 1) // page_size
