from unittest import TestCase
from unittest.mock import patch
from io import BytesIO

import psycopg2
from ModestMaps.Core import Coordinate

from TileSorcerer import Geography, Providers
from TileSorcerer.Core import KnownUnknown

from . import utils

class ProviderTests(TestCase):

    def setUp(self):
        self.provider = Providers.Provider(None, utils.data_path('tm2layers.yml'),
                                           {'host': 'localhost', 'database': 'gis', 'bogus': 'ignored'})

    def render(self, coord, rows=(), error=None, provider=None):
        connection = utils.FakeConnection(rows, error)

        with patch('TileSorcerer.Providers.connect', return_value=connection) as connect:
            body = (provider or self.provider).renderMVT(coord)

        connect.assert_called_once_with(host='localhost', database='gis')
        self.assertTrue(connection.closed)

        return body, connection.db.executed

    def test_concatenate(self):
        '''Each row's blob is added to the tile, in order'''
        rows = [(b'\x1a\x05water',), (None,), (memoryview(b'\x1a\x03poi'),), (b'',)]
        body, executed = self.render(Coordinate(22, 33, 6), rows)

        self.assertEqual(body, b'\x1a\x05water\x1a\x03poi')
        self.assertEqual(len(executed), 1)

    def test_empty(self):
        body, executed = self.render(Coordinate(0, 0, 0), [])
        self.assertEqual(body, b'')

    def test_bound_parameters(self):
        '''Tile envelope, zoom, pixel width, then one envelope per buffer size'''
        body, executed = self.render(Coordinate(22, 33, 6), [(b'',)])
        query, args = executed[0]

        plan = self.provider.plan()
        self.assertEqual(query, plan.sql)
        self.assertEqual(plan.slots.sizes, (4, 8, 64))
        self.assertEqual(len(args), 18)

        envelope = Geography.tileEnvelope(256, 6, 33, 22)
        self.assertEqual([args['p%d' % n] for n in (1, 2, 3, 4)], list(envelope.bbox()))
        self.assertEqual((args['p5'], args['p6']), (6, 256))

        for (size, first) in ((4, 7), (8, 11), (64, 15)):
            envelope = Geography.tileEnvelope(256, 6, 33, 22, size)
            self.assertEqual([args['p%d' % n] for n in range(first, first + 4)], list(envelope.bbox()))

    def test_bind_values(self):
        plan = self.provider.plan()
        values = Providers.bindValues(plan, 256, 6, 33, 22)

        self.assertEqual(len(values), len(plan.params))
        self.assertAlmostEqual(values[plan.params.index('buffer_64_north')], 6261721.35712164 + Geography.bufferAmount(256, 6, 64), places=3)

    def test_numeric(self):
        '''Numeric plans run as a prepared statement'''
        provider = Providers.Provider(None, utils.data_path('tm2layers.yml'),
                                      {'host': 'localhost', 'database': 'gis'}, paramstyle='numeric')

        body, executed = self.render(Coordinate(22, 33, 6), [(b'\x1a\x00',)], provider=provider)

        self.assertEqual(body, b'\x1a\x00')
        self.assertEqual(len(executed), 2)

        prepare, args = executed[0]
        types = ', '.join(['float8'] * 4 + ['integer'] * 2 + ['float8'] * 12)
        self.assertEqual(prepare, 'PREPARE tilesorcerer_plan (%s) AS %s' % (types, provider.plan().sql))
        self.assertEqual(args, None)

        execute, args = executed[1]
        self.assertTrue(execute.startswith('EXECUTE tilesorcerer_plan (%s, %s, '))
        self.assertEqual(execute.count('%s'), 18)
        self.assertEqual(args[4:6], [6, 256])

    def test_outside_source(self):
        '''Tiles outside the source zoom range never reach the database'''
        with patch('TileSorcerer.Providers.connect') as connect:
            self.assertRaises(KnownUnknown, self.provider.renderMVT, Coordinate(0, 0, 15))
            self.assertRaises(KnownUnknown, self.provider.renderMVT, Coordinate(0, 4, 2))

        self.assertFalse(connect.called)

    def test_database_error(self):
        '''Database errors come through unchanged and nothing is written'''
        out = BytesIO()
        error = psycopg2.OperationalError('server closed the connection unexpectedly')
        connection = utils.FakeConnection([(b'\x1a\x00',)], error)

        with patch('TileSorcerer.Providers.connect', return_value=connection):
            response = self.provider.renderTile(None, None, None, Coordinate(22, 33, 6))
            self.assertRaises(psycopg2.OperationalError, response.save, out, 'MVT')

        self.assertEqual(out.getvalue(), b'')
        self.assertTrue(connection.closed)

    def test_response(self):
        out = BytesIO()
        connection = utils.FakeConnection([(b'\x1a\x01a',), (b'\x1a\x01b',)])

        with patch('TileSorcerer.Providers.connect', return_value=connection):
            response = self.provider.renderTile(None, None, None, Coordinate(22, 33, 6))
            response.save(out, 'MVT')

            self.assertRaises(KnownUnknown, response.save, out, 'PNG')

        self.assertEqual(out.getvalue(), b'\x1a\x01a\x1a\x01b')

    def test_extensions(self):
        self.assertEqual(self.provider.getTypeByExtension('mvt'), ('application/vnd.mapbox-vector-tile', 'MVT'))
        self.assertEqual(self.provider.getTypeByExtension('PBF'), ('application/vnd.mapbox-vector-tile', 'MVT'))
        self.assertRaises(KnownUnknown, self.provider.getTypeByExtension, 'png')

    def test_shared_plan(self):
        '''Providers sharing a source share one compiled plan'''
        other = Providers.Provider(None, self.provider.source, {})
        self.assertTrue(other.plan() is self.provider.plan())

    def test_assemble(self):
        self.assertEqual(Providers.assembleTile([]), b'')
        self.assertEqual(Providers.assembleTile([(None,), (bytearray(b'ab'),), (b'c',)]), b'abc')
