"""Engine-agnostic tabular result model."""

from typing import Any

from pydantic import BaseModel, Field

from sql_repository.utils.serialization import dumps


class DataTable(BaseModel):
    """Column-and-row result of a query."""

    columns: list[str] = Field(default_factory=list, description="Column names in order")
    rows: list[list[Any]] = Field(
        default_factory=list, description="Row values in column order"
    )

    @classmethod
    def from_cursor(cls, columns: list[str], rows: list[Any]) -> "DataTable":
        """Build a table from column names and driver row tuples."""
        return cls(columns=list(columns), rows=[list(row) for row in rows])

    @property
    def row_count(self) -> int:
        """Get number of rows."""
        return len(self.rows)

    @property
    def column_count(self) -> int:
        """Get number of columns."""
        return len(self.columns)

    @property
    def is_empty(self) -> bool:
        """Check if the table has no rows."""
        return self.row_count == 0

    def has_column(self, column: str) -> bool:
        """Check for a column, ignoring case as SQL identifiers do."""
        return self._index_of(column) is not None

    def remove_column(self, column: str) -> bool:
        """
        Remove a column and its values from every row.

        Args:
            column: Column name (case-insensitive)

        Returns:
            True if the column existed and was removed
        """
        index = self._index_of(column)
        if index is None:
            return False

        del self.columns[index]
        for row in self.rows:
            del row[index]
        return True

    def get_column_values(self, column: str) -> list[Any]:
        """Extract all values for a specific column."""
        index = self._index_of(column)
        if index is None:
            raise KeyError(column)
        return [row[index] for row in self.rows]

    def to_dicts(self) -> list[dict[str, Any]]:
        """Convert rows to dictionaries keyed by column name."""
        return [dict(zip(self.columns, row)) for row in self.rows]

    def to_json(self) -> str:
        """Serialize rows as a JSON array of objects."""
        return dumps(self.to_dicts())

    def to_table_string(self, max_rows: int = 10) -> str:
        """Format result as a simple table string."""
        if self.is_empty:
            return "No rows returned"

        # Header
        result_lines = [" | ".join(self.columns)]
        result_lines.append("-" * len(result_lines[0]))

        for row in self.rows[:max_rows]:
            values = ["NULL" if value is None else str(value) for value in row]
            result_lines.append(" | ".join(values))

        if self.row_count > max_rows:
            result_lines.append(f"... ({self.row_count - max_rows} more rows)")

        return "\n".join(result_lines)

    def _index_of(self, column: str) -> int | None:
        wanted = column.lower()
        for index, name in enumerate(self.columns):
            if name.lower() == wanted:
                return index
        return None
