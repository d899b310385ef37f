#!/usr/bin/env python
"""tilesorcerer-plan.py will show you the query behind your tiles.

This script is intended to be run directly. This example prints the compiled
query for a tm2source, followed by the parameters bound for one tile:

    tilesorcerer-plan.py -t 6/33/22 openmaptiles.tm2source/data.yml

No database connection is made, so it's a quick way to check that every
layer template compiles.

See `tilesorcerer-plan.py --help` for more information.
"""

import re
from sys import stderr
from optparse import OptionParser

from TileSorcerer import TM2, Compiler, Providers
from TileSorcerer.Core import KnownUnknown
from TileSorcerer.Geography import checkCoordinate

from ModestMaps.Core import Coordinate

parser = OptionParser(usage="""%prog [options] source

The single argument should be the path to a tm2source data.yml file.""")

parser.set_defaults(paramstyle='numeric', strict=True)

parser.add_option('-t', '--tile', dest='tile',
                  help='Optional tile like "6/33/22", to also list its bound parameters.')

parser.add_option('-p', '--paramstyle', dest='paramstyle',
                  help='Query parameter style, "numeric" or "pyformat". Default value is "numeric".')

parser.add_option('--lenient', dest='strict', action='store_false',
                  help='Compile templates with unrecognized tokens or no geometry column anyway.')

tile_pat = re.compile(r'^(?P<z>\d+)/(?P<x>\d+)/(?P<y>\d+)$')

def bindTile(source, plan, path):
    """ Return (name, type, value) for each parameter bound for one "z/x/y" tile.

        Raise KnownUnknown for tiles the source can't render.
    """
    tile = tile_pat.match(path)

    if tile is None:
        raise KnownUnknown('"%s" is not a tile I understand. I was expecting something more like "6/33/22".' % path)

    zoom, x, y = [int(tile.group(p)) for p in 'zxy']
    checkCoordinate(Coordinate(y, x, zoom), source.min_zoom, source.max_zoom)

    values = Providers.bindValues(plan, source.pixel_scale, zoom, x, y)

    return list(zip(plan.params, plan.types, values))

if __name__ == '__main__':
    options, args = parser.parse_args()

    try:
        if len(args) != 1:
            raise KnownUnknown('Expected exactly one tm2source path.')

        source = TM2.loadSource(args[0])
        plan = Compiler.compilePlan(source, options.paramstyle, options.strict)

        if options.tile:
            bound = bindTile(source, plan, options.tile)
        else:
            bound = []

    except KnownUnknown as e:
        parser.error(str(e))

    print(plan.sql)

    if bound:
        print('', file=stderr)

        for (index, (name, type, value)) in enumerate(bound):
            print('%3d %-24s %-8s %r' % (index + 1, name, type, value), file=stderr)
