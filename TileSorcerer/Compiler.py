""" Compile a tm2 Source into a single PostGIS query for whole tiles.

Each layer's table template is rewritten by replacing Mapnik-style tokens
with references to bound query parameters, its geometry column is handed to
ST_AsMVTGeom(), and the result is wrapped in ST_AsMVT(). All layers are glued
together with UNION ALL, so one round trip returns one MVT blob per layer.

Recognized tokens:

    !bbox_nobuffer!           the tile envelope
    !bbox!                    the tile envelope, buffered by the layer's buffer-size
    z(!scale_denominator!)    the zoom level
    !scale_denominator!       the Mapnik scale denominator at the zoom level
    !pixel_width!             the tile width in pixels
    !pixel_height!            the tile height in pixels

Bound parameters, numbered from 1:

    1-4     tile envelope: west, south, east, north
    5       zoom level
    6       tile pixel width
    7-10    envelope for the smallest buffer size: west, south, east, north
    11-14   envelope for the next buffer size, and so on.

Layers sharing a buffer size share its four parameters. See TileSorcerer.Buffers.

The geometry column is encoded once, where it first appears outside any
parentheses, i.e. in the outermost select list. Only when every mention is
nested, as in "SELECT * FROM (SELECT geometry ...) AS s", is the first nested
one used. Other mentions, e.g. in WHERE clauses, are left alone.

Two parameter styles are supported. "pyformat" writes %(p1)s references for
psycopg2 and escapes any literal % in templates, "numeric" writes $1 references
for PREPARE statements and drivers that speak PostgreSQL's native style.

The query text depends only on the Source, so it's compiled once and kept
in a PlanCache for every tile after that.
"""

import re
import logging
from threading import Lock

from . import Buffers
from .Core import KnownUnknown, TemplateError
from .Geography import SRID, MAP_WIDTH_IN_METRES

TILE_EXTENT = 4096

# Meters per pixel of a standard rendering device, 0.28mm, used by Mapnik.
_PIXEL_SIZE = 0.00028

_token_pat = re.compile(r'z\(!scale_denominator!\)|!(\w+)!')

PARAM_NAMES = ('west', 'south', 'east', 'north', 'zoom', 'pixel_scale')

# Postgres types of the parameters above, and of each buffered envelope.
PARAM_TYPES = ('float8', 'float8', 'float8', 'float8', 'integer', 'integer')

class Paramstyle:
    """ How parameter references are written into query text.
    """
    def __init__(self, name, reference, escape):
        self.name = name
        self.reference = reference
        self.escape = escape

    def arguments(self, values):
        """ Package an ordered list of values the way a driver expects them.
        """
        if self.name == 'pyformat':
            return dict(('p%d' % (index + 1), value) for (index, value) in enumerate(values))

        return list(values)

paramstyles = {
    'pyformat': Paramstyle('pyformat', lambda n: '%%(p%d)s' % n, lambda text: text.replace('%', '%%')),
    'numeric': Paramstyle('numeric', lambda n: '$%d' % n, lambda text: text)
    }

def getParamstyle(name):
    try:
        return paramstyles[name]
    except KeyError:
        raise KnownUnknown('Unknown paramstyle "%s", try one of: %s' % (name, ', '.join(sorted(paramstyles))))

class QueryPlan:
    """ A compiled query and the parameters it expects, in order.

        Attributes:

          sql:
            Query text with parameter references.

          slots:
            Buffers.SlotTable used to lay out buffered envelope parameters.

          params:
            Tuple of parameter names, in binding order.

          types:
            Tuple of Postgres type names matching params, for PREPARE.

          paramstyle:
            Paramstyle used in sql.

          layer_ids:
            Tuple of layer ids in the order they appear in sql.
    """
    def __init__(self, sql, slots, paramstyle, layer_ids):
        self.sql = sql
        self.slots = slots
        self.paramstyle = paramstyle
        self.layer_ids = tuple(layer_ids)

        names, types = list(PARAM_NAMES), list(PARAM_TYPES)

        for size in slots:
            names += ['buffer_%d_%s' % (size, side) for side in PARAM_NAMES[:4]]
            types += PARAM_TYPES[:4]

        self.params = tuple(names)
        self.types = tuple(types)

    def __repr__(self):
        return 'QueryPlan(%d layers, %d params)' % (len(self.layer_ids), len(self.params))

    def arguments(self, values):
        """ Package ordered parameter values for the database driver.
        """
        if len(values) != len(self.params):
            raise KnownUnknown('Query plan expects %d parameters, got %d' % (len(self.params), len(values)))

        return self.paramstyle.arguments(values)

class _Rewrite:
    """ Per-layer token producers for a Source being compiled.
    """
    def __init__(self, layer, slots, paramstyle):
        self.layer = layer
        self.slots = slots
        self.ref = paramstyle.reference

    def envelope(self, first):
        refs = ', '.join(self.ref(n) for n in range(first, first + 4))
        return 'ST_MakeEnvelope(%s, %d)' % (refs, SRID)

    def bbox_nobuffer(self):
        return self.envelope(1)

    def bbox(self):
        return self.envelope(self.slots.offset(self.layer.buffer_size))

    def zoom(self):
        return self.ref(5)

    def pixel_width(self):
        return self.ref(6)

    def scale_denominator(self):
        return '(%.8f / (%s::float8 * %s * power(2::float8, %s::float8)))' \
             % (MAP_WIDTH_IN_METRES, self.ref(6), repr(_PIXEL_SIZE), self.ref(5))

producers = {
    'z(!scale_denominator!)': _Rewrite.zoom,
    '!scale_denominator!': _Rewrite.scale_denominator,
    '!bbox_nobuffer!': _Rewrite.bbox_nobuffer,
    '!bbox!': _Rewrite.bbox,
    '!pixel_width!': _Rewrite.pixel_width,
    '!pixel_height!': _Rewrite.pixel_width
    }

def templateTokens(template):
    """ Return a list of every !token! in a template, in order, repeats included.
    """
    return [match.group(0) for match in _token_pat.finditer(template)]

def quoteLiteral(value):
    """ Quote a string as a SQL literal.
    """
    return "'%s'" % value.replace("'", "''")

def mvtBuffer(buffer_size, pixel_scale):
    """ Express a pixel buffer in tile extent units, for ST_AsMVTGeom().
    """
    return int(round(buffer_size * TILE_EXTENT / float(pixel_scale)))

def compileLayer(layer, pixel_scale, slots, paramstyle, strict=True):
    """ Rewrite one layer's table template into a query for one MVT blob.
    """
    rewrite = _Rewrite(layer, slots, paramstyle)
    template = paramstyle.escape(layer.table)

    unknown = [token for token in templateTokens(template) if token not in producers]

    if unknown:
        if strict:
            raise TemplateError(layer.id, 'unrecognized tokens %s' % ', '.join(sorted(set(unknown))))

        logging.warning('TileSorcerer.Compiler.compileLayer() leaving unrecognized tokens %s in layer "%s"', ', '.join(sorted(set(unknown))), layer.id)

    geom = 'ST_AsMVTGeom(%s, %s, %d, %d, true) AS geom' \
         % (layer.geometry_field, rewrite.bbox_nobuffer(), TILE_EXTENT, mvtBuffer(layer.buffer_size, pixel_scale))

    geom_pat = re.compile(r'\b%s\b' % re.escape(layer.geometry_field))
    found = _findGeometry(geom_pat, template)

    def substitute(match):
        token = match.group(0)

        if token in producers:
            return producers[token](rewrite)

        return token

    if found is None:
        if strict:
            raise TemplateError(layer.id, 'table never mentions geometry column "%s"' % layer.geometry_field)

        logging.warning('TileSorcerer.Compiler.compileLayer() found no geometry column "%s" in layer "%s"', layer.geometry_field, layer.id)

        pieces = [template]

    else:
        pieces = [template[:found.start()], template[found.end():]]

    # Tokens are substituted on either side of the geometry column
    # so its replacement is never mistaken for part of the template.
    query = geom.join(_token_pat.sub(substitute, piece) for piece in pieces)

    arguments = [quoteLiteral(layer.id), str(TILE_EXTENT), quoteLiteral('geom')]

    if layer.key_field:
        arguments.append(quoteLiteral(layer.key_field))

    mvt = 'ST_AsMVT(t.*, %s)' % ', '.join(paramstyle.escape(arg) for arg in arguments)

    return 'SELECT %s AS mvt FROM (SELECT * FROM (%s) AS q WHERE q.geom IS NOT NULL) AS t' % (mvt, query)

def _findGeometry(geom_pat, template):
    """ Return the match of the geometry column to encode, or None.

        The first mention outside any parentheses wins, which is the select
        list of the outermost query even after a WITH clause. Failing that,
        the first mention anywhere. Mentions inside quoted strings never count.
    """
    depths, depth, quote = [], 0, None

    for char in template:
        if quote:
            depths.append(None)
            if char == quote:
                quote = None
            continue

        if char in ("'", '"'):
            quote = char
            depths.append(None)
            continue

        if char == ')':
            depth -= 1

        depths.append(depth)

        if char == '(':
            depth += 1

    matches = [match for match in geom_pat.finditer(template)
               if depths[match.start()] is not None]

    for match in matches:
        if depths[match.start()] == 0:
            return match

    return matches[0] if matches else None

def compilePlan(source, paramstyle='pyformat', strict=True):
    """ Compile every layer of a Source into one QueryPlan.

        With strict false, badly-formed templates are compiled anyway
        and will most likely fail once they reach the database.
    """
    style = getParamstyle(paramstyle)
    slots = Buffers.resolveBuffers([layer.buffer_size for layer in source.layers])

    queries = [compileLayer(layer, source.pixel_scale, slots, style, strict)
               for layer in source.layers]

    plan = QueryPlan('\nUNION ALL\n'.join(queries), slots, style,
                     [layer.id for layer in source.layers])

    logging.debug('TileSorcerer.Compiler.compilePlan() compiled "%s" with %d layers and %d buffer slots', source.name, len(queries), len(slots))

    return plan

class PlanCache:
    """ Compile-once cache of QueryPlans, keyed on Source identity.

        Reads never lock. A miss takes the lock, checks again, and
        compiles at most once per Source and option set.

        Nothing is ever evicted on its own. Each entry keeps its Source
        alive until discard() or clear(), so call discard() for sources
        that are replaced, e.g. when configuration is read again.
    """
    def __init__(self):
        self._plans = {}
        self._lock = Lock()

    def __len__(self):
        return len(self._plans)

    def get(self, source, paramstyle='pyformat', strict=True):
        key = id(source), paramstyle, bool(strict)
        entry = self._plans.get(key)

        if entry is None or entry[0] is not source:
            with self._lock:
                entry = self._plans.get(key)

                if entry is None or entry[0] is not source:
                    entry = source, compilePlan(source, paramstyle, strict)
                    self._plans = _published(self._plans, key, entry)

        return entry[1]

    def discard(self, source):
        """ Forget every plan compiled for a source.
        """
        with self._lock:
            self._plans = dict([(key, entry) for (key, entry) in self._plans.items()
                                if entry[0] is not source])

    def clear(self):
        with self._lock:
            self._plans = {}

def _published(plans, key, entry):
    """ Return a new dictionary with one more entry, leaving plans untouched.
    """
    plans = dict(plans)
    plans[key] = entry

    return plans

plans = PlanCache()
