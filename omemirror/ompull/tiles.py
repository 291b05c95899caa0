'''
Iterate over an image's tiles in the x, y plane respecting the dimension ordering
'''

from collections import namedtuple

DIMENSIONS = 'XYZCT'


class Tile(namedtuple('Tile', ['x', 'y', 'z', 'c', 't', 'w', 'h'])):
    __slots__ = ()

    def is_same_plane(self, other):
        return other is not None and (self.z, self.c, self.t) == (other.z, other.c, other.t)

    def __str__(self):
        return 'Tile(x={}, y={}, z={}, c={}, t={}; {}x{})'.format(*self)


class TileIterator:
    '''
    Each iteration covers the given dimensions in the given order, the first letter varying fastest.
    Re-iterating with the same instance reproduces the same sequence: the ordinal position of a tile
    is its index into the tile store header.
    '''

    def __init__(self, size_x, size_y, size_z, size_c, size_t, tile_x, tile_y, ordering):
        sizes = [size_x, size_y, size_z, size_c, size_t, tile_x, tile_y]
        if any(size < 1 for size in sizes):
            raise ValueError('sizes must be positive: {}'.format(sizes))
        unknown = set(ordering) - set(DIMENSIONS)
        if unknown:
            raise ValueError('unknown dimension: {}'.format(''.join(sorted(unknown))))
        if sorted(ordering) != sorted(DIMENSIONS):
            raise ValueError('ordering must name each of {} once: {}'.format(DIMENSIONS, ordering))

        self.size_x = size_x
        self.size_y = size_y
        self.size_z = size_z
        self.size_c = size_c
        self.size_t = size_t
        self.tile_x = tile_x
        self.tile_y = tile_y
        self.ordering = ordering

    def __len__(self):
        columns = -(-self.size_x // self.tile_x)
        rows = -(-self.size_y // self.tile_y)
        return columns * rows * self.size_z * self.size_c * self.size_t

    def _make_tile(self, x, y, z, c, t):
        return Tile(x, y, z, c, t, min(self.size_x - x, self.tile_x), min(self.size_y - y, self.tile_y))

    def _next_tile(self, tile):
        position = {'X': tile.x, 'Y': tile.y, 'Z': tile.z, 'C': tile.c, 'T': tile.t}
        steps = {'X': self.tile_x, 'Y': self.tile_y}
        limits = {'X': self.size_x, 'Y': self.size_y, 'Z': self.size_z, 'C': self.size_c, 'T': self.size_t}

        for dimension in self.ordering:
            position[dimension] += steps.get(dimension, 1)
            if position[dimension] < limits[dimension]:
                return self._make_tile(*[position[d] for d in DIMENSIONS])
            # overflow: reset and carry into the next dimension
            position[dimension] = 0

        # carry pending past the last dimension
        return None

    def __iter__(self):
        tile = self._make_tile(0, 0, 0, 0, 0)
        while tile is not None:
            yield tile
            tile = self._next_tile(tile)
