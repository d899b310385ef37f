""" The configuration bits of TileSorcerer.

TileSorcerer configuration is stored in JSON files, and is composed of one
main top-level section, "layers". There is an example of it in this minimal
sample configuration:

    {
      "layers": {
        "openmaptiles": {
            "provider": {
              "name": "tm2",
              "source": "openmaptiles.tm2source/data.yml",
              "dbinfo": {"user": "gis", "database": "gis"}
            }
        }
      }
    }

The "layers" section is a dictionary of layer names which are specified in
the path of an individual tile. More detail on the configuration of providers
can be found in the TileSorcerer.Providers module documentation.

Configuration also supports this additional setting:

- "logging": one of "debug", "info", "warning", "error" or "critical", as
  described in Python's logging module: http://docs.python.org/howto/logging.html
"""

import logging
from json import dumps as json_dumps

from . import Core
from . import Providers

class Configuration:
    """ A complete site configuration, with a collection of Layer objects.

        Attributes:

          layers:
            Dictionary of layers keyed by name.

          dirpath:
            Local filesystem path for this configuration,
            useful for expanding relative paths.
    """
    def __init__(self, dirpath):
        self.dirpath = dirpath
        self.layers = {}

def buildConfiguration(config_dict, dirpath='.'):
    """ Build a configuration dictionary into a Configuration object.

        The second argument is an optional dirpath that specifies where in the
        local filesystem the parsed dictionary originated, to make it possible
        to resolve relative paths. It might be a path or more likely a full
        URL including the "file://" prefix.
    """
    if 'logging' in config_dict:
        level = config_dict['logging'].upper()

        if hasattr(logging, level):
            logging.basicConfig(level=getattr(logging, level))

    config = Configuration(dirpath)

    for (name, layer_dict) in config_dict.get('layers', {}).items():
        config.layers[name] = _parseConfigLayer(layer_dict, config, dirpath)

    return config

def _parseConfigLayer(layer_dict, config, dirpath):
    """ Used by parseConfig() to parse just the layer parts of a config.
    """
    if 'provider' not in layer_dict:
        raise Core.KnownUnknown('Missing required provider in layer: %s' % json_dumps(layer_dict))

    provider_dict = layer_dict['provider']

    if 'name' in provider_dict:
        _class = Providers.getProviderByName(provider_dict['name'])
        provider_kwargs = _class.prepareKeywordArgs(provider_dict)

    elif 'class' in provider_dict:
        _class = Core.loadClassPath(provider_dict['class'])
        provider_kwargs = provider_dict.get('kwargs', {})
        provider_kwargs = dict( [(str(k), v) for (k, v) in provider_kwargs.items()] )

    else:
        raise Core.KnownUnknown('Missing required provider name or class: %s' % json_dumps(provider_dict))

    layer = Core.Layer(config)
    layer.provider = _class(layer, **provider_kwargs)

    return layer
