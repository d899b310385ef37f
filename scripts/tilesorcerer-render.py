#!/usr/bin/env python
"""tilesorcerer-render.py will render tiles into a z/x/y directory tree.

This script is intended to be run directly. This example will save two tiles
around Switzerland under ./tiles:

    tilesorcerer-render.py -c ./config.json -l openmaptiles -o ./tiles 6/33/22 6/33/23

Output for this sample might look like this:

    tiles/6/33/22.mvt (48211 bytes)
    tiles/6/33/23.mvt (51907 bytes)

Every tile is checked against the zoom range of its tm2source before anything
is rendered, so one bad coordinate stops the whole run before it starts.
Tiles with no features are written too, as empty files.

See `tilesorcerer-render.py --help` for more information.
"""

import re
import os
import logging
from optparse import OptionParser

from TileSorcerer import parseConfig, getTile
from TileSorcerer.Core import KnownUnknown
from TileSorcerer.Geography import checkCoordinate

from ModestMaps.Core import Coordinate

parser = OptionParser(usage="""%prog [options] [tile...]

Each tile in the argument list should look like "6/33/22" or "6/33/22.pbf".
Tiles are rendered in order, each written to <output>/z/x/y.<extension>
and listed on stdout.

Configuration and layer options are required; see `%prog --help` for info.""")

parser.set_defaults(output='.', extension='mvt', verbose=False)

parser.add_option('-c', '--config', dest='config',
                  help='Path to configuration file.')

parser.add_option('-l', '--layer', dest='layer',
                  help='Layer name from configuration.')

parser.add_option('-o', '--output-directory', dest='output',
                  help='Directory to write tiles into. Default value is the current directory.')

parser.add_option('-e', '--extension', dest='extension',
                  help='Extension for tiles given without one, "mvt" or "pbf". Default value is "mvt".')

parser.add_option('-v', '--verbose', dest='verbose', action='store_true',
                  help='Log the compiled queries and render times.')

tile_pat = re.compile(r'^(?P<z>\d+)/(?P<x>\d+)/(?P<y>\d+)(\.(?P<e>\w+))?$')

def parseTile(path, extension):
    """ Return a Coordinate and an extension for one "z/x/y[.ext]" argument.
    """
    tile = tile_pat.match(path)

    if tile is None:
        raise KnownUnknown('"%s" is not a tile I understand. I was expecting something more like "6/33/22".' % path)

    coord = Coordinate(int(tile.group('y')), int(tile.group('x')), int(tile.group('z')))

    return coord, tile.group('e') or extension

def checkTile(layer, coord, extension):
    """ Raise KnownUnknown unless the layer can render this tile.
    """
    source = getattr(layer.provider, 'source', None)

    if source is None:
        checkCoordinate(coord)
    else:
        checkCoordinate(coord, source.min_zoom, source.max_zoom)

    layer.getTypeByExtension(extension)

def tilePath(directory, coord, extension):
    """ Path of a tile file in a z/x/y tree.
    """
    return os.path.join(directory, str(coord.zoom), str(coord.column), '%d.%s' % (coord.row, extension))

if __name__ == '__main__':
    options, paths = parser.parse_args()

    if options.verbose:
        logging.basicConfig(level=logging.DEBUG)

    try:
        if options.config is None:
            raise KnownUnknown('Missing required configuration (--config) parameter.')

        if options.layer is None:
            raise KnownUnknown('Missing required layer (--layer) parameter.')

        if not paths:
            raise KnownUnknown('No tiles to render, try something like "6/33/22".')

        config = parseConfig(options.config)

        if options.layer not in config.layers:
            raise KnownUnknown('"%s" is not a layer I know about. Here are some that I do know about: %s.' % (options.layer, ', '.join(sorted(config.layers.keys()))))

        layer = config.layers[options.layer]

        requests = []

        for path in paths:
            coord, extension = parseTile(path, options.extension)
            checkTile(layer, coord, extension)
            requests.append((coord, extension))

    except KnownUnknown as e:
        parser.error(str(e))

    for (coord, extension) in requests:
        mimetype, content = getTile(layer, coord, extension)
        filename = tilePath(options.output, coord, extension)

        if not os.path.isdir(os.path.dirname(filename)):
            os.makedirs(os.path.dirname(filename))

        with open(filename, 'wb') as file:
            file.write(content)

        print('%s (%d bytes)' % (filename, len(content)))
