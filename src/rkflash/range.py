from dataclasses import dataclass


@dataclass(frozen=True)
class Range:
    """
    Half-open range of byte offsets.

    :ivar start: The first offset in the Range
    :ivar end: The offset just past the Range
    """

    start: int
    end: int

    def __post_init__(self):
        if self.start < 0:
            raise ValueError("The start value must not be negative")
        if self.start > self.end:
            raise ValueError("The start value must be less than or equal to the end value")

    def within(self, range: "Range") -> bool:
        """
        Determine if this range is within the provided range
        """
        return self.start >= range.start and self.end <= range.end

    def as_slice(self) -> slice:
        return slice(self.start, self.end)

    def __repr__(self) -> str:
        return f"Range({hex(self.start)}, {hex(self.end)})"

    @staticmethod
    def from_size(start: int, size: int) -> "Range":
        return Range(start, start + size)
