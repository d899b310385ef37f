""" The provider bits of TileSorcerer.

A Provider is the part of TileSorcerer that actually renders tiles. Each one
offers renderMVT(), taking a ModestMaps Coordinate and returning the bytes of
a Mapbox Vector Tile. The one built-in provider reads a TileMill 2 source and
renders it from PostGIS:

- tm2 (Provider)

Example built-in provider, for JSON configuration file:

    "layer-name": {
        "provider": {
            "name": "tm2",
            "source": "openmaptiles.tm2source/data.yml",
            "dbinfo": {"host": "localhost", "user": "gis", "database": "gis"}
        }
    }

Example external provider, for JSON configuration file:

    "layer-name": {
        "provider": {"class": "Module:Classname", "kwargs": {"frob": "yes"}},
        ...
    }

- The "class" value is split up into module and classname, and dynamically
  included. If this doesn't work for some reason, TileSorcerer will fail loudly
  to let you know.
- The "kwargs" value is fed to the class constructor as a dictionary of keyword
  args, after the layer itself.

Providers also offer renderTile(), which returns an object with a save()
method accepting a file-like object and a format name, e.g. this should work:

    provider.renderTile(None, None, None, coord).save(fp, "MVT")
"""

import logging
from time import time
from os.path import exists

from urllib.parse import urljoin, urlparse

from psycopg2 import connect

from . import TM2
from . import Compiler
from . import Geography
from .Core import KnownUnknown

MIMETYPE = 'application/vnd.mapbox-vector-tile'

# Name used for the server-side prepared statement with numeric paramstyle.
_prepared_name = 'tilesorcerer_plan'

def getProviderByName(name):
    """ Retrieve a provider object by name.

        Raise an exception if the name doesn't work out.
    """
    if name.lower() == 'tm2':
        return Provider

    raise KnownUnknown('Unknown provider name: "%s"' % name)

class TileSource:
    """ Anything that can render a Mapbox Vector Tile for a tile coordinate.
    """
    def renderMVT(self, coord):
        """ Return MVT bytes for a single ModestMaps Coordinate.
        """
        raise NotImplementedError()

    def renderTile(self, width, height, srs, coord):
        """ Render a single tile, return a Response instance.
        """
        return Response(self, coord)

    def getTypeByExtension(self, extension):
        """ Get mime-type and format by file extension, "mvt" or "pbf" only.
        """
        if extension.lower() in ('mvt', 'pbf'):
            return MIMETYPE, 'MVT'

        raise KnownUnknown('Unknown extension "%s", try "mvt" or "pbf"' % extension)

class Connection:
    """ Context manager for Postgres connections.

        See http://www.python.org/dev/peps/pep-0343/
    """
    def __init__(self, dbinfo):
        self.dbinfo = dbinfo

    def __enter__(self):
        self.db = connect(**self.dbinfo).cursor()
        return self.db

    def __exit__(self, type, value, traceback):
        self.db.connection.close()

class Provider(TileSource):
    """ TileMill 2 source provider for PostGIS.

        Parameters:

          source:
            Required tm2source, either a path to its data.yml, interpreted
            relative to the location of the configuration file, or the
            same information as a dictionary.

          dbinfo:
            Required dictionary of Postgres connection parameters. Should
            include some combination of 'host', 'user', 'password', and 'database'.

          paramstyle:
            Optional query parameter style, "pyformat" or "numeric". Numeric
            queries run as a server-side prepared statement. Default "pyformat".

          strict:
            Optional boolean flag determines whether unrecognized tokens or
            a missing geometry column in a layer table are an error at
            startup. Default true.

        Sample configuration:

          "provider":
          {
            "name": "tm2",
            "source": "openmaptiles.tm2source/data.yml",
            "dbinfo":
            {
              "host": "localhost",
              "user": "gis",
              "password": "gis",
              "database": "gis"
            }
          }
    """
    def __init__(self, layer, source, dbinfo, paramstyle='pyformat', strict=True):
        self.layer = layer

        keys = 'host', 'user', 'password', 'database', 'port', 'dbname'
        self.dbinfo = dict([(k, v) for (k, v) in dbinfo.items() if k in keys])

        if not isinstance(source, (dict, TM2.Source)):
            #
            # might be a file?
            #
            dirpath = getattr(getattr(layer, 'config', None), 'dirpath', '.')
            url = urljoin(dirpath, source)
            scheme, h, path, p, q, f = urlparse(url)

            if scheme in ('file', '') and exists(path):
                source = path

        self.source = TM2.loadSource(source)
        self.paramstyle = paramstyle
        self.strict = bool(strict)

        # Compile up front so template mistakes show up at configuration time.
        self.plan()

    @staticmethod
    def prepareKeywordArgs(config_dict):
        """ Convert configured parameters to keyword args for __init__().
        """
        if 'source' not in config_dict:
            raise KnownUnknown('Missing required "source" in tm2 provider: %s' % ', '.join(sorted(config_dict.keys())))

        kwargs = {'source': config_dict['source'], 'dbinfo': config_dict.get('dbinfo', {})}

        if 'paramstyle' in config_dict:
            kwargs['paramstyle'] = str(config_dict['paramstyle'])

        if 'strict' in config_dict:
            kwargs['strict'] = bool(config_dict['strict'])

        return kwargs

    def plan(self):
        """ Return the cached QueryPlan for this provider's source.
        """
        return Compiler.plans.get(self.source, self.paramstyle, self.strict)

    def renderMVT(self, coord):
        """ Render a single tile from PostGIS, return MVT bytes.
        """
        start_time = time()
        source = self.source

        Geography.checkCoordinate(coord, source.min_zoom, source.max_zoom)

        plan = self.plan()
        values = bindValues(plan, source.pixel_scale, coord.zoom, coord.column, coord.row)

        with Connection(self.dbinfo) as db:
            rows = execute(db, plan, values)

        body = assembleTile(rows)

        logging.debug('TileSorcerer.Providers.Provider.renderMVT() %s %d/%d/%d: %d bytes in %.3f', source.name, coord.zoom, coord.column, coord.row, len(body), time() - start_time)

        return body

class Response:
    """ Deferred tile, rendered when saved.
    """
    def __init__(self, provider, coord):
        self.provider = provider
        self.coord = coord

    def save(self, out, format):
        """ Write the whole tile to out, or nothing at all if rendering fails.
        """
        if format != 'MVT':
            raise KnownUnknown('Unknown format "%s", only MVT tiles here' % format)

        out.write(self.provider.renderMVT(self.coord))

def bindValues(plan, pixel_scale, zoom, x, y):
    """ Return ordered parameter values for a plan and one tile.

        Tile envelope, zoom, pixel width, then one envelope
        per buffer slot in slot order, each west, south, east, north.
    """
    values = list(Geography.tileEnvelope(pixel_scale, zoom, x, y).bbox())
    values += [int(zoom), int(pixel_scale)]

    for size in plan.slots:
        values += Geography.tileEnvelope(pixel_scale, zoom, x, y, size).bbox()

    return values

def execute(db, plan, values):
    """ Run a plan on a cursor with ordered values, return all rows.
    """
    if plan.paramstyle.name == 'numeric':
        # Zoom and pixel width are used both as integers and as float8.
        db.execute('PREPARE %s (%s) AS %s' % (_prepared_name, ', '.join(plan.types), plan.sql))

        placeholders = ', '.join(['%s'] * len(values))
        db.execute('EXECUTE %s (%s)' % (_prepared_name, placeholders), plan.arguments(values))

    else:
        db.execute(plan.sql, plan.arguments(values))

    return db.fetchall()

def assembleTile(rows):
    """ Concatenate the single bytes column of each row into one tile.

        Rows with no data, e.g. layers with no features, add nothing.
    """
    return b''.join(bytes(row[0]) for row in rows if row[0] is not None)
