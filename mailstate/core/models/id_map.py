"""UniqueIdMap: correlation between pre- and post-operation message UIDs."""

from typing import Iterator, Optional, Sequence, Tuple

from mailstate.core.models.unique_id import UniqueId
from mailstate.utils.errors import InvalidArgumentError


class UniqueIdMap:
    """Immutable mapping of source UIDs to destination UIDs.

    Built from the parallel sequences a COPY/MOVE/REPLACE reports
    (``source[i]`` became ``destination[i]``). The sequences may differ in
    length; only the common prefix is correlated. Lookups are by value and
    return the destination aligned with the *first* matching source entry.
    """

    __slots__ = ("_source", "_destination")

    EMPTY: "UniqueIdMap"

    def __init__(
        self,
        source: Optional[Sequence[UniqueId]],
        destination: Optional[Sequence[UniqueId]],
    ):
        if source is None:
            raise InvalidArgumentError("source must not be None", details={"argument": "source"})
        if destination is None:
            raise InvalidArgumentError(
                "destination must not be None", details={"argument": "destination"}
            )
        object.__setattr__(self, "_source", tuple(source))
        object.__setattr__(self, "_destination", tuple(destination))

    def __setattr__(self, key, value):
        raise AttributeError("UniqueIdMap is immutable")

    @property
    def source(self) -> Tuple[UniqueId, ...]:
        return self._source

    @property
    def destination(self) -> Tuple[UniqueId, ...]:
        return self._destination

    def lookup(self, uid: UniqueId) -> Optional[UniqueId]:
        """Return the destination UID for ``uid``, or None when uncorrelated."""
        try:
            index = self._source.index(uid)
        except ValueError:
            return None

        if index >= len(self._destination):
            return None

        return self._destination[index]

    def contains(self, uid: UniqueId) -> bool:
        return uid in self._source

    def keys(self) -> Tuple[UniqueId, ...]:
        return self._source

    def values(self) -> Tuple[UniqueId, ...]:
        return self._destination

    def items(self) -> Iterator[Tuple[UniqueId, UniqueId]]:
        return iter(self)

    def __contains__(self, uid: object) -> bool:
        return uid in self._source

    def __getitem__(self, uid: UniqueId) -> UniqueId:
        value = self.lookup(uid)
        if value is None:
            raise KeyError(uid)
        return value

    def __iter__(self) -> Iterator[Tuple[UniqueId, UniqueId]]:
        return zip(self._source, self._destination)

    def __len__(self) -> int:
        return len(self._source)

    def __bool__(self) -> bool:
        return bool(self._source) and bool(self._destination)

    def __repr__(self) -> str:
        return f"UniqueIdMap(source={len(self._source)}, destination={len(self._destination)})"


UniqueIdMap.EMPTY = UniqueIdMap((), ())


def build_id_map(
    source: Optional[Sequence[UniqueId]], destination: Optional[Sequence[UniqueId]]
) -> UniqueIdMap:
    """Build a UniqueIdMap from the sequences a copy/move/replace returned."""
    return UniqueIdMap(source, destination)
