from tempfile import mkstemp
import os
import inspect

from ModestMaps.Core import Coordinate
from TileSorcerer import getTile, parseConfig

def data_path(name):
    '''
    Absolute path to a file in the tests/data directory
    '''
    current_script_dir = os.path.dirname(os.path.abspath(inspect.getfile(inspect.currentframe())))
    return os.path.join(current_script_dir, 'data', name)

def request(config_file_content, layer_name, extension, row, column, zoom):
    '''
    Helper method to write config_file_content to disk and do
    request
    '''

    absolute_file_name = create_temp_file(config_file_content)

    try:
        config = parseConfig(absolute_file_name)
        layer = config.layers[layer_name]
        coord = Coordinate(int(row), int(column), int(zoom))
        mime_type, tile_content = getTile(layer, coord, extension)

    finally:
        os.remove(absolute_file_name)

    return mime_type, tile_content

def create_temp_file(buffer):
    '''
    Helper method to create temp file on disk. Caller is responsible
    for deleting file once done
    '''
    fd, absolute_file_name = mkstemp(text=True)
    file = os.fdopen(fd, 'w')
    file.write(buffer)
    file.close()
    return absolute_file_name

class FakeCursor:
    '''
    Stands in for a psycopg2 cursor, returning canned rows
    and remembering every statement it was asked to run
    '''
    def __init__(self, connection, rows):
        self.connection = connection
        self.rows = rows
        self.executed = []

    def execute(self, query, vars=None):
        if self.connection.error is not None:
            raise self.connection.error

        self.executed.append((query, vars))

    def fetchall(self):
        return list(self.rows)

class FakeConnection:
    '''
    Stands in for a psycopg2 connection with a single cursor
    '''
    def __init__(self, rows=(), error=None):
        self.error = error
        self.closed = False
        self.db = FakeCursor(self, rows)

    def cursor(self):
        return self.db

    def close(self):
        self.closed = True
