""" Vector tiles straight out of PostGIS, one query per tile.

TileSorcerer reads TileMill 2 source descriptions (tm2source) and compiles
every layer into a single PostGIS query that returns a complete Mapbox
Vector Tile for a zoom/x/y slippy map tile. Serving the tiles over HTTP is
left to whatever you already use for that; TileSorcerer hands back bytes.

    >>> config = parseConfig('config.json')
    >>> layer = config.layers['openmaptiles']
    >>> mimetype, body = getTile(layer, Coordinate(22, 33, 6), 'mvt')
"""
import os.path

__version__ = open(os.path.join(os.path.dirname(__file__), 'VERSION')).read().strip()

import re

from os.path import dirname, realpath
from json import load as json_load
from urllib.parse import urlparse
from urllib.request import urlopen

from ModestMaps.Core import Coordinate

from . import Core
from . import Config

# regular expression for PATH_INFO
_pathinfo_pat = re.compile(r'^/?(?P<l>\w.+)/(?P<z>\d+)/(?P<x>-?\d+)/(?P<y>-?\d+)\.(?P<e>\w+)$')

def getTile(layer, coord, extension):
    """ Get a type string and tile binary for a given request layer tile.

        Arguments:
        - layer: instance of Core.Layer to render.
        - coord: one ModestMaps.Core.Coordinate corresponding to a single tile.
        - extension: filename extension to choose response type, e.g. "mvt".

        This is the main entry point, after site configuration has been loaded
        and individual tiles need to be rendered.
    """
    status_code, headers, body = layer.getTileResponse(coord, extension)
    mime = headers.get('Content-Type')

    return mime, body

def parseConfig(configHandle):
    """ Parse a configuration file and return a Configuration object.

        Configuration could be a Python dictionary or a file formatted as JSON.
        In both cases it needs a "layers" section:

          {
            "layers": {
              "layer-1": { ... },
              "layer-2": { ... },
              ...
            }
          }

        The full path to the file is significant, used to
        resolve any relative paths found in the configuration.
    """
    if isinstance(configHandle, dict):
        config_dict = configHandle
        dirpath = '.'
    else:
        scheme, host, path, p, q, f = urlparse(configHandle)

        if scheme == '':
            scheme = 'file'
            path = realpath(path)

        if scheme == 'file':
            with open(path) as file:
                config_dict = json_load(file)
        else:
            config_dict = json_load(urlopen(configHandle))

        dirpath = '%s://%s%s' % (scheme, host, dirname(path).rstrip('/') + '/')

    return Config.buildConfiguration(config_dict, dirpath)

def splitPathInfo(pathinfo):
    """ Converts a PATH_INFO string to layer name, coordinate, and extension parts.

        Example: "/layer/6/33/22.mvt", leading "/" optional.
    """
    path = _pathinfo_pat.match(pathinfo or '')

    if path is None:
        raise Core.KnownUnknown('Bad path: "{}". I was expecting something more like "/example/0/0/0.mvt"'.format(pathinfo))

    layer, row, column, zoom, extension = [path.group(p) for p in 'lyxze']
    coord = Coordinate(int(row), int(column), int(zoom))

    return layer, coord, extension
