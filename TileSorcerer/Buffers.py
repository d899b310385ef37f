""" Buffer slots shared between the layers of a tile source.

Every layer asks for its own pixel buffer, but most sources only use a
handful of distinct sizes. Each distinct size gets one buffered envelope,
bound once per tile as four query parameters, and every layer using that
size refers to the same four parameters.

Slots follow the sorted order of the distinct sizes, so the same set of
sizes always produces the same slots no matter which layers ask for them:

    >>> table = resolveBuffers([32, 4, 4, 0])
    >>> table.sizes
    (0, 4, 32)
    >>> table.slot(32)
    2
"""

from .Core import SpecError

# Parameters bound ahead of the first buffer slot: the unbuffered
# envelope (4), the zoom level (1) and the tile pixel width (1).
PREFIX_PARAMS = 6

# Parameters per buffer slot, a west, south, east, north envelope.
SLOT_STRIDE = 4

class SlotTable:
    """ Mapping from distinct buffer size to a zero-based parameter slot.

        Build one with resolveBuffers() rather than directly.
    """
    def __init__(self, sizes):
        self.sizes = tuple(sizes)
        self._slots = dict((size, slot) for (slot, size) in enumerate(self.sizes))

    def __len__(self):
        return len(self.sizes)

    def __iter__(self):
        return iter(self.sizes)

    def __contains__(self, size):
        return size in self._slots

    def __eq__(self, other):
        return isinstance(other, SlotTable) and self.sizes == other.sizes

    def __hash__(self):
        return hash(('SlotTable', self.sizes))

    def __repr__(self):
        return 'SlotTable(%s)' % ', '.join('%d=>%d' % (size, slot) for (slot, size) in enumerate(self.sizes))

    def slot(self, size):
        """ Return the slot index for a buffer size, or raise KeyError.
        """
        return self._slots[size]

    def offset(self, size):
        """ Return the 1-based position of the first parameter of a size's envelope.
        """
        return PREFIX_PARAMS + SLOT_STRIDE * self.slot(size) + 1

    def paramCount(self):
        """ Total number of parameters a query plan with these slots binds.
        """
        return PREFIX_PARAMS + SLOT_STRIDE * len(self.sizes)

def resolveBuffers(sizes):
    """ Sort and deduplicate per-layer buffer sizes into a SlotTable.

        Sizes must be non-negative integers; anything else is a SpecError.
    """
    distinct = set()

    for size in sizes:
        if isinstance(size, bool) or not isinstance(size, int):
            raise SpecError('Buffer size must be an integer, not %r' % (size, ))

        if size < 0:
            raise SpecError('Buffer size must not be negative, not %d' % size)

        distinct.add(size)

    return SlotTable(sorted(distinct))
