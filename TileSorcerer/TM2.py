""" TileMill 2 source descriptions, the "data.yml" inside a .tm2source.

A tm2source lists vector tile layers, each one a PostGIS subquery with
Mapnik-style tokens for the tile bounding box and scale. A trimmed-down
OpenMapTiles sample:

    name: OpenMapTiles
    pixel_scale: 256
    attribution: OpenStreetMap contributors
    minzoom: 0
    maxzoom: 14
    center: [0, 0, 4]
    bounds: [-180, -85.0511, 180, 85.0511]
    Layer:
      - id: water
        properties:
          buffer-size: 4
        Datasource:
          geometry_field: geometry
          key_field: ""
          table: |-
            (SELECT geometry, class FROM layer_water(!bbox!, z(!scale_denominator!))) AS t

loadSource() accepts the parsed mapping, YAML text, or a path to a YAML
file, and returns a Source. A Source is never modified after loading and
is safe to share between threads rendering different tiles.

Further reading: https://tilemill-project.github.io/tilemill/docs/manual/adding-layers/
"""

import re
import logging
from os.path import exists

import yaml

from .Core import SpecError, TemplateError
from .Geography import isSphericalMercator

DEFAULT_CENTER = (0.0, 0.0, 0)
DEFAULT_BOUNDS = (-180.0, -85.0511, 180.0, 85.0511)

_alias_pat = re.compile(r'^\s*AS\s+"?\w+"?\s*$', re.I)

class DataLayer:
    """ A single layer of a Source.

        Attributes:

          id:
            Layer name, written into the tile.

          buffer_size:
            Pixel buffer around the tile to include geometries from.

          table:
            The subquery with Mapnik tokens, unwrapped from its "( ... ) AS t".

          key_field:
            Optional feature id column, or None.

          geometry_field:
            Column holding the geometry, "geometry" unless told otherwise.

          srid:
            Optional SRID of the datasource as written in the tm2source, or None.
    """
    def __init__(self, id, buffer_size, table, key_field=None, geometry_field='geometry', srid=None):
        self.id = id
        self.buffer_size = buffer_size
        self.table = table
        self.key_field = key_field or None
        self.geometry_field = geometry_field or 'geometry'
        self.srid = srid

    def __repr__(self):
        return 'DataLayer(%r, buffer_size=%d)' % (self.id, self.buffer_size)

class Source:
    """ The TileMill (.tm2source) data source model.
    """
    def __init__(self, name, pixel_scale, layers, attribution='', min_zoom=0, max_zoom=22,
                 center=DEFAULT_CENTER, bounds=DEFAULT_BOUNDS, description='', srs=None):
        self.name = name
        self.pixel_scale = pixel_scale
        self.layers = tuple(layers)
        self.attribution = attribution
        self.min_zoom = min_zoom
        self.max_zoom = max_zoom
        self.center = tuple(center)
        self.bounds = tuple(bounds)
        self.description = description
        self.srs = srs

    def __repr__(self):
        return 'Source(%r, %d layers)' % (self.name, len(self.layers))

    def layer(self, id):
        """ Return the layer with a given id, or raise KeyError.
        """
        for layer in self.layers:
            if layer.id == id:
                return layer

        raise KeyError(id)

def extractTable(layer_id, table):
    """ Pull the subquery out of a wrapped "( <subquery> ) AS <alias>" table.

        The closing parenthesis must match the opening one, skipping over
        parentheses inside quoted strings, and be followed by nothing but
        the alias. Raise TemplateError otherwise.
    """
    text = table.strip()

    if not text.startswith('('):
        raise TemplateError(layer_id, 'table must look like "( SELECT ... ) AS t", not %r' % text[:40])

    depth, quote = 0, None

    for (index, char) in enumerate(text):
        if quote:
            if char == quote:
                quote = None
            continue

        if char in ("'", '"'):
            quote = char

        elif char == '(':
            depth += 1

        elif char == ')':
            depth -= 1

            if depth == 0:
                break
    else:
        raise TemplateError(layer_id, 'table has an unbalanced parenthesis or quote')

    if not _alias_pat.match(text[index+1:]):
        raise TemplateError(layer_id, 'table must end with ") AS <alias>", not %r' % text[index:])

    subquery = text[1:index].strip()

    if not subquery:
        raise TemplateError(layer_id, 'table subquery is empty')

    return subquery

def _require(dict_, key, kind, context):
    """ Fetch a required key of a given type from dict_, or raise SpecError.
    """
    if key not in dict_:
        raise SpecError('Missing required "%s" in %s' % (key, context))

    value = dict_[key]

    if isinstance(value, bool) or not isinstance(value, kind):
        raise SpecError('Expected "%s" in %s to be %s, not %r' % (key, context, _kindname(kind), value))

    return value

def _kindname(kind):
    if kind is int:
        return 'an integer'
    if kind is str:
        return 'a string'
    if kind is list:
        return 'a list'
    if kind is dict:
        return 'a mapping'
    return 'a number'

def _numbers(dict_, key, count, default, context):
    """ Fetch an optional fixed-length list of numbers, e.g. center or bounds.
    """
    value = dict_.get(key, default)

    if not isinstance(value, (list, tuple)) or len(value) != count:
        raise SpecError('Expected "%s" in %s to be a list of %d numbers, not %r' % (key, context, count, value))

    for number in value:
        if isinstance(number, bool) or not isinstance(number, (int, float)):
            raise SpecError('Expected "%s" in %s to be a list of %d numbers, not %r' % (key, context, count, value))

    return tuple(value)

def _checkSrs(dict_, context):
    """ Return the optional "srs" of a source or layer, or raise SpecError.

        Tiles are only ever built in spherical mercator.
    """
    srs = dict_.get('srs') or None

    if srs is None:
        return None

    if not isinstance(srs, str) or not isSphericalMercator(srs):
        raise SpecError('Expected "srs" in %s to be spherical mercator (EPSG:3857), not %r' % (context, srs))

    return srs

def _parseLayer(index, layer_dict):
    """ Used by buildSource() to parse just one layer of a source.
    """
    if not isinstance(layer_dict, dict):
        raise SpecError('Layer #%d must be a mapping, not %r' % (index, layer_dict))

    layer_id = _require(layer_dict, 'id', str, 'layer #%d' % index)
    context = 'layer "%s"' % layer_id

    properties = layer_dict.get('properties') or {}

    if not isinstance(properties, dict):
        raise SpecError('Expected "properties" in %s to be a mapping' % context)

    buffer_size = properties.get('buffer-size', 0)

    if isinstance(buffer_size, bool) or not isinstance(buffer_size, int) or buffer_size < 0:
        raise SpecError('Expected "buffer-size" in %s to be a non-negative integer, not %r' % (context, buffer_size))

    datasource = _require(layer_dict, 'Datasource', dict, context)
    table = _require(datasource, 'table', str, context + ' Datasource')

    key_field = datasource.get('key_field') or None
    geometry_field = datasource.get('geometry_field') or 'geometry'

    for (name, value) in (('key_field', key_field), ('geometry_field', geometry_field)):
        if value is not None and not isinstance(value, str):
            raise SpecError('Expected "%s" in %s Datasource to be a string, not %r' % (name, context, value))

    _checkSrs(layer_dict, context)

    srid = datasource.get('srid')

    if srid is not None and (isinstance(srid, bool) or not isinstance(srid, (int, str))):
        raise SpecError('Expected "srid" in %s Datasource to be a number or string, not %r' % (context, srid))

    srid = None if srid in (None, '') else str(srid)

    return DataLayer(layer_id, buffer_size, extractTable(layer_id, table),
                     key_field, geometry_field, srid)

def buildSource(source_dict):
    """ Build a parsed tm2source mapping into a Source object.

        Raise SpecError when something is missing or the wrong shape.
    """
    if not isinstance(source_dict, dict):
        raise SpecError('A tm2source must be a mapping, not %s' % type(source_dict).__name__)

    name = _require(source_dict, 'name', str, 'source')
    context = 'source "%s"' % name

    pixel_scale = _require(source_dict, 'pixel_scale', int, context)

    if pixel_scale <= 0:
        raise SpecError('Expected "pixel_scale" in %s to be positive, not %d' % (context, pixel_scale))

    min_zoom = source_dict.get('minzoom', 0)
    max_zoom = source_dict.get('maxzoom', 22)

    for (key, zoom) in (('minzoom', min_zoom), ('maxzoom', max_zoom)):
        if isinstance(zoom, bool) or not isinstance(zoom, int) or not (0 <= zoom <= 30):
            raise SpecError('Expected "%s" in %s to be a zoom level from 0 to 30, not %r' % (key, context, zoom))

    if min_zoom > max_zoom:
        raise SpecError('Expected "minzoom" in %s to be no more than "maxzoom", not %d > %d' % (context, min_zoom, max_zoom))

    attribution = source_dict.get('attribution') or ''
    description = source_dict.get('description') or ''
    srs = _checkSrs(source_dict, context)

    center = _numbers(source_dict, 'center', 3, DEFAULT_CENTER, context)
    bounds = _numbers(source_dict, 'bounds', 4, DEFAULT_BOUNDS, context)

    layer_dicts = _require(source_dict, 'Layer', list, context)
    layers, seen = [], set()

    for (index, layer_dict) in enumerate(layer_dicts):
        layer = _parseLayer(index, layer_dict)

        if layer.id in seen:
            raise SpecError('Layer id "%s" appears more than once in %s' % (layer.id, context))

        seen.add(layer.id)
        layers.append(layer)

    if not layers:
        raise SpecError('No layers in %s' % context)

    logging.debug('TileSorcerer.TM2.buildSource() loaded %s with %d layers', context, len(layers))

    return Source(name, pixel_scale, layers, attribution, min_zoom, max_zoom,
                  center, bounds, description, srs)

def loadSource(handle):
    """ Load a Source from a mapping, a YAML file path, or YAML text.
    """
    if isinstance(handle, Source):
        return handle

    if isinstance(handle, dict):
        return buildSource(handle)

    try:
        if exists(handle):
            with open(handle) as file:
                source_dict = yaml.safe_load(file)
        else:
            source_dict = yaml.safe_load(handle)

    except yaml.YAMLError as e:
        raise SpecError('Invalid YAML in tm2source: %s' % e)

    return buildSource(source_dict)
