"""Configuration classes for fastapi-listquery."""

from dataclasses import dataclass
from typing import Optional

from fastapi_listquery.models import EnvelopeShape, SortingOrder


@dataclass
class ListQueryConfig:
    """
    Configuration for list query behavior.

    Attributes:
        max_per_page: Maximum allowed items per page (default: 100)
        default_per_page: Default items per page when not specified (default: 10)
        default_page: Default page number when not specified (default: 1)
        min_per_page: Minimum allowed items per page (default: 1)
        default_sort_order: Sort order used when the request gives none or an
            unrecognized one (default: desc)
        envelope: Response envelope shape (default: {data, pagination})
        use_window_function: Force the ``COUNT(*) OVER()`` pagination path on/off.
            None = auto-detect (enabled for PostgreSQL).

    Example:
        engine = ListQueryEngine(
            policy,
            config=ListQueryConfig(default_per_page=15, envelope=EnvelopeShape.META),
        )
    """

    # Pagination settings
    max_per_page: int = 100
    default_per_page: int = 10
    default_page: int = 1
    min_per_page: int = 1

    # Sorting settings
    default_sort_order: SortingOrder = SortingOrder.DESC

    # Output settings
    envelope: EnvelopeShape = EnvelopeShape.PAGINATION

    # Execution settings
    use_window_function: Optional[bool] = None

    def __post_init__(self):
        """Validate configuration values."""
        if self.max_per_page < 1:
            raise ValueError("max_per_page must be >= 1")
        if self.default_per_page < 1:
            raise ValueError("default_per_page must be >= 1")
        if self.default_per_page > self.max_per_page:
            raise ValueError("default_per_page cannot exceed max_per_page")
        if self.min_per_page < 1:
            raise ValueError("min_per_page must be >= 1")
        if self.min_per_page > self.max_per_page:
            raise ValueError("min_per_page cannot exceed max_per_page")
        if self.default_page < 1:
            raise ValueError("default_page must be >= 1")
        self.default_sort_order = SortingOrder(self.default_sort_order)
        self.envelope = EnvelopeShape(self.envelope)

    def validate_page(self, page: int) -> int:
        """
        Constrain a page number.

        Args:
            page: Requested page number

        Returns:
            int: The page, or default_page when below 1
        """
        if page < 1:
            return self.default_page
        return page

    def validate_per_page(self, per_page: int) -> int:
        """
        Validate and constrain items per page.

        Args:
            per_page: Requested items per page

        Returns:
            int: Valid per_page value, constrained to min/max bounds
        """
        if per_page < self.min_per_page:
            return self.min_per_page
        if per_page > self.max_per_page:
            return self.max_per_page
        return per_page


# Pre-defined configurations for common use cases
class ListQueryPresets:
    """Pre-defined ListQueryConfig presets for common use cases."""

    @staticmethod
    def default() -> ListQueryConfig:
        """Default configuration with sensible defaults."""
        return ListQueryConfig()

    @staticmethod
    def meta_envelope(default_per_page: int = 15) -> ListQueryConfig:
        """
        Configuration producing the {data, meta, links} envelope.

        Args:
            default_per_page: Default items per page
        """
        return ListQueryConfig(
            default_per_page=default_per_page,
            envelope=EnvelopeShape.META,
        )

    @staticmethod
    def high_volume(max_per_page: int = 500, default_per_page: int = 100) -> ListQueryConfig:
        """
        Configuration for high-volume APIs.

        Args:
            max_per_page: Maximum items per page
            default_per_page: Default items per page
        """
        return ListQueryConfig(
            max_per_page=max_per_page,
            default_per_page=default_per_page,
        )
