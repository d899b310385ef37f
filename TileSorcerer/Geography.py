""" The geography bits of TileSorcerer.

Only one projection is supported, the "spherical mercator" used by nearly
all web maps (EPSG:3857). Tiles are addressed with ModestMaps Coordinate
objects, where row is the slippy map y index and column is the x index:

    >>> coord = Coordinate(22, 33, 6)
    >>> tileEnvelope(256, coord.zoom, coord.column, coord.row)
    Envelope(north=6261721.357, south=5635549.221, east=1252344.271, west=626172.136)

An Envelope is a projected bounding box in meters. Buffered envelopes are
the same tile envelope pushed outward by a number of pixels, measured at the
tile pixel width of the source being rendered.
"""

from ModestMaps.Core import Coordinate
from ModestMaps.Geo import deriveTransformation, MercatorProjection
from math import log as _log, tan as _tan, pi as _pi

from . import Core

# Half the circumference of the earth in EPSG:3857 meters.
EPSG_3857_BOUNDS = 6378137 * _pi

MAP_WIDTH_IN_METRES = 40075016.68557849

SRID = 3857

MAX_ZOOM = 30

class SphericalMercator(MercatorProjection):
    """ Spherical mercator projection for the commonly-used web map tile scheme.

        Only used here to turn tile coordinates into geographic locations;
        the trip from locations to meters happens in projectLonLat().
    """
    def __init__(self):
        pi = _pi

        # Transform from raw mercator projection to tile coordinates
        t = deriveTransformation(-pi, pi, 0, 0, pi, pi, 1, 0, -pi, -pi, 0, 1)

        MercatorProjection.__init__(self, 0, t)

_mercator = SphericalMercator()

# Names for EPSG:3857, including the older unofficial code.
_mercator_names = ('epsg:3857', 'epsg:900913', '+init=epsg:3857', '+init=epsg:900913')

def isSphericalMercator(srs):
    """ Return true if an srs string describes spherical mercator.

        Accepts EPSG:3857 or EPSG:900913 by code, or a proj.4 definition
        of a mercator projection on a 6378137 meter sphere, like the
        one TileMill writes into every tm2source.
    """
    text = str(srs).strip().lower()

    if text in _mercator_names:
        return True

    params = text.split()

    return '+proj=merc' in params and '+a=6378137' in params and '+b=6378137' in params

class Envelope:
    """ Axis-aligned bounding box in EPSG:3857 meters.
    """
    def __init__(self, north, south, east, west):
        self.north = north
        self.south = south
        self.east = east
        self.west = west

    def __repr__(self):
        return 'Envelope(north=%(north).3f, south=%(south).3f, east=%(east).3f, west=%(west).3f)' % self.__dict__

    def __eq__(self, other):
        return isinstance(other, Envelope) and self.bbox() == other.bbox()

    def __hash__(self):
        return hash(('Envelope', ) + self.bbox())

    def bbox(self):
        """ Return (west, south, east, north), the order ST_MakeEnvelope takes.
        """
        return self.west, self.south, self.east, self.north

    def width(self):
        return self.east - self.west

    def height(self):
        return self.north - self.south

    def expand(self, amount):
        """ Return a new envelope pushed outward by amount on all four sides.
        """
        return Envelope(self.north + amount, self.south - amount,
                        self.east + amount, self.west - amount)

def projectLonLat(lon, lat):
    """ Convert longitude and latitude degrees in EPSG:4326 to (x, y) in EPSG:3857.

        Latitude must be within the mercator limits of about +/-85.0511
        degrees; nothing outside that range has a sensible answer.
    """
    y = _log(_tan((90 + lat) * _pi / 360)) / (_pi / 180)

    return lon * EPSG_3857_BOUNDS / 180, y * EPSG_3857_BOUNDS / 180

def bufferAmount(tile_px_width, zoom, buffer):
    """ Convert a buffer in pixels at a zoom level to EPSG:3857 meters.
    """
    map_width_in_px = float(tile_px_width) * 2 ** zoom
    buffer_px_percentage = buffer / map_width_in_px

    return buffer_px_percentage * MAP_WIDTH_IN_METRES

def tileEnvelope(tile_px_width, zoom, x, y, buffer=0):
    """ Return the Envelope of a single tile, optionally buffered in pixels.

        The corners are found by way of geographic locations: the
        north-west corner of tile x, y and the north-west corner of tile
        x + 1, y + 1 are each converted to longitude and latitude, then
        projected. A zero buffer returns that envelope untouched.
    """
    coord = Coordinate(y, x, zoom)

    nw = _mercator.coordinateLocation(coord)
    se = _mercator.coordinateLocation(coord.down().right())

    west, north = projectLonLat(nw.lon, nw.lat)
    east, south = projectLonLat(se.lon, se.lat)

    envelope = Envelope(north, south, east, west)

    if buffer:
        envelope = envelope.expand(bufferAmount(tile_px_width, zoom, buffer))

    return envelope

def checkCoordinate(coord, min_zoom=0, max_zoom=MAX_ZOOM):
    """ Check that a tile Coordinate is whole and inside the tile pyramid.

        Raise KnownUnknown if it isn't.
    """
    zoom, x, y = coord.zoom, coord.column, coord.row

    for value in (zoom, x, y):
        if int(value) != value:
            raise Core.KnownUnknown('Tile coordinates must be whole numbers, not %s/%s/%s' % (zoom, x, y))

    if not (max(0, min_zoom) <= zoom <= min(max_zoom, MAX_ZOOM)):
        raise Core.KnownUnknown('Zoom %d is outside the range %d to %d' % (zoom, min_zoom, max_zoom))

    size = 2 ** int(zoom)

    if not (0 <= x < size and 0 <= y < size):
        raise Core.KnownUnknown('Tile %d/%d/%d is outside the %d x %d grid at that zoom' % (zoom, x, y, size, size))
