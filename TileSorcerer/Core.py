""" The core class bits of TileSorcerer.

Layer represents a single vector tile source in TileSorcerer. It keeps
references to a provider and a Configuration instance. Layers are
represented in the configuration file as a dictionary:

    {
      "layers":
      {
        "example-name":
        {
          "provider": { ... }
        }
      }
    }

- "provider" refers to a Provider, explained in detail in TileSorcerer.Providers.

The public-facing path of a single tile for this layer might look like this:

    /example-name/6/33/22.mvt

The exceptions used throughout TileSorcerer are also defined here:

- KnownUnknown for common mistakes in configuration or requests.
- SpecError for tile source descriptions that cannot be used.
- TemplateError for layer table templates that cannot be compiled.

Database failures are never wrapped; psycopg2 errors reach the caller as-is.
"""

import logging
from sys import modules
from wsgiref.headers import Headers
from io import BytesIO
from time import time

class Layer:
    """ A Layer, with its provider and configuration.

        Attributes:

          provider:
            Render provider, see TileSorcerer.Providers.

          config:
            Configuration instance, see TileSorcerer.Config.
    """
    def __init__(self, config):
        self.provider = None
        self.config = config

    def name(self):
        """ Figure out what I'm called, return a name if there is one.

            Layer names are stored in the Configuration object, so
            config.layers must be inspected to find a matching name.
        """
        for (name, layer) in self.config.layers.items():
            if layer is self:
                return name

        return None

    def getTileResponse(self, coord, extension):
        """ Get status code, headers, and a tile binary for a given request layer tile.

            Arguments:
            - coord: one ModestMaps.Core.Coordinate corresponding to a single tile.
            - extension: filename extension to choose response type, e.g. "mvt".

            This is the main entry point, after site configuration has been loaded
            and individual tiles need to be rendered.
        """
        start_time = time()

        mimetype, format = self.getTypeByExtension(extension)

        headers = Headers([('Content-Type', mimetype)])
        buff = BytesIO()

        tile = self.provider.renderTile(None, None, None, coord)
        tile.save(buff, format)
        body = buff.getvalue()

        logging.info('TileSorcerer.Core.Layer.getTileResponse() %s/%d/%d/%d.%s (%d bytes) in %.3f', self.name(), coord.zoom, coord.column, coord.row, extension, len(body), time() - start_time)

        return 200, headers, body

    def getTypeByExtension(self, extension):
        """ Get mime-type and format by file extension.
        """
        if hasattr(self.provider, 'getTypeByExtension'):
            return self.provider.getTypeByExtension(extension)

        raise KnownUnknown('Unknown extension in configuration: "%s"' % extension)

class KnownUnknown(Exception):
    """ There are known unknowns. That is to say, there are things that we now know we don't know.

        This exception gets thrown in a couple places where common mistakes are made.
    """
    pass

class SpecError(KnownUnknown):
    """ A tile source description is structurally invalid.

        Raised while loading a source, before any query plan is compiled.
        Not worth retrying: the same description will fail the same way.
    """
    pass

class TemplateError(SpecError):
    """ A layer's table template can't be turned into a query.

        Raised for a badly-wrapped table subquery, an unrecognized !token!,
        or a missing geometry column when compiling strictly.
    """
    def __init__(self, layer_id, message):
        self.layer_id = layer_id
        SpecError.__init__(self, 'Layer "%s": %s' % (layer_id, message))

def loadClassPath(classpath):
    """ Load external class based on a path.

        Example classpath: "Module.Submodule:Classname".

        Equivalent classpath: "Module.Submodule.Classname".
    """
    if ':' in classpath:
        modname, objname = classpath.split(':', 1)

        try:
            __import__(modname)
            module = modules[modname]
            _class = eval(objname, module.__dict__)

            if _class is None:
                raise Exception('eval(%(objname)s) in %(modname)s came up None' % locals())

        except Exception as e:
            raise KnownUnknown('Tried to import %s, but: %s' % (classpath, e))

    else:
        classpath = classpath.split('.')

        try:
            module = __import__('.'.join(classpath[:-1]), fromlist=str(classpath[-1]))
        except ImportError as e:
            raise KnownUnknown('Tried to import %s, but: %s' % ('.'.join(classpath), e))

        try:
            _class = getattr(module, classpath[-1])
        except AttributeError as e:
            raise KnownUnknown('Tried to import %s, but: %s' % ('.'.join(classpath), e))

    return _class
