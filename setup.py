#!/usr/bin/env python

from setuptools import setup


version = open('TileSorcerer/VERSION', 'r').read().strip()


requires = ['ModestMaps >=1.4.7', 'psycopg2', 'PyYAML']


setup(name='TileSorcerer',
      version=version,
      description='Mapbox Vector Tiles from TileMill 2 sources, one PostGIS query per tile.',
      install_requires=requires,
      extras_require={'test': ['pytest']},
      packages=['TileSorcerer'],
      scripts=['scripts/tilesorcerer-render.py', 'scripts/tilesorcerer-plan.py'],
      package_data={'TileSorcerer': ['VERSION']},
      license='BSD')
