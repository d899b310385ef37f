from unittest import TestCase
from unittest.mock import patch
import json

from ModestMaps.Core import Coordinate

from TileSorcerer import Core, Providers, parseConfig, getTile, splitPathInfo
from TileSorcerer.Core import KnownUnknown, TemplateError

from . import utils

class ConfigTests(TestCase):

    def config(self, provider):
        return {'layers': {'openmaptiles': {'provider': provider}}}

    def test_config(self):
        '''Read configuration and verify successful read'''
        config = parseConfig(self.config({'name': 'tm2', 'source': utils.data_path('tm2layers.yml'),
                                          'dbinfo': {'host': 'localhost', 'database': 'gis'}}))

        layer = config.layers['openmaptiles']
        self.assertTrue(isinstance(layer, Core.Layer))
        self.assertTrue(isinstance(layer.provider, Providers.Provider))
        self.assertEqual(layer.name(), 'openmaptiles')
        self.assertEqual(layer.provider.source.name, 'OpenMapTiles')

        with patch('TileSorcerer.Providers.connect', return_value=utils.FakeConnection([(b'\x1a\x00',)])):
            mimetype, body = getTile(layer, Coordinate(22, 33, 6), 'mvt')

        self.assertEqual(mimetype, 'application/vnd.mapbox-vector-tile')
        self.assertEqual(body, b'\x1a\x00')

    def test_config_file(self):
        '''Read configuration from a file, with the source relative to it'''
        config_content = json.dumps(self.config({'name': 'tm2', 'source': utils.data_path('tm2layers.yml'),
                                                 'paramstyle': 'numeric'}))

        with patch('TileSorcerer.Providers.connect', return_value=utils.FakeConnection([(b'\x1a\x01x',)])):
            mimetype, body = utils.request(config_content, 'openmaptiles', 'pbf', 22, 33, 6)

        self.assertEqual(mimetype, 'application/vnd.mapbox-vector-tile')
        self.assertEqual(body, b'\x1a\x01x')

    def test_config_class(self):
        config = parseConfig(self.config({'class': 'TileSorcerer.Providers:Provider',
                                          'kwargs': {'source': utils.data_path('tm2layers.yml'), 'dbinfo': {}}}))

        self.assertTrue(isinstance(config.layers['openmaptiles'].provider, Providers.Provider))

    def test_config_inline_source(self):
        source = {'name': 'Inline', 'pixel_scale': 512, 'Layer': [
            {'id': 'water', 'Datasource': {'table': '(SELECT geometry FROM water WHERE geometry && !bbox!) AS t'}}]}

        config = parseConfig(self.config({'name': 'tm2', 'source': source}))
        self.assertEqual(config.layers['openmaptiles'].provider.source.pixel_scale, 512)

    def test_config_mistakes(self):
        self.assertRaises(KnownUnknown, parseConfig, {'layers': {'nope': {}}})
        self.assertRaises(KnownUnknown, parseConfig, self.config({'name': 'mapnik'}))
        self.assertRaises(KnownUnknown, parseConfig, self.config({'name': 'tm2'}))
        self.assertRaises(KnownUnknown, parseConfig, self.config({'class': 'TileSorcerer.Nope:Provider'}))
        self.assertRaises(KnownUnknown, parseConfig, self.config({'kwargs': {}}))

    def test_config_bad_template(self):
        '''Template mistakes show up when the configuration is read'''
        source = {'name': 'Broken', 'pixel_scale': 256, 'Layer': [
            {'id': 'water', 'Datasource': {'table': '(SELECT way FROM water WHERE way && !bbox!) AS t'}}]}

        self.assertRaises(TemplateError, parseConfig, self.config({'name': 'tm2', 'source': source}))

        config = parseConfig(self.config({'name': 'tm2', 'source': source, 'strict': False}))
        self.assertFalse('ST_AsMVTGeom' in config.layers['openmaptiles'].provider.plan().sql)

    def test_split_path_info(self):
        layer, coord, extension = splitPathInfo('/openmaptiles/6/33/22.mvt')

        self.assertEqual(layer, 'openmaptiles')
        self.assertEqual(coord, Coordinate(22, 33, 6))
        self.assertEqual(extension, 'mvt')

        self.assertRaises(KnownUnknown, splitPathInfo, '/openmaptiles/6/33.mvt')
