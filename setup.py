import os

from setuptools import find_packages, setup

import omemirror

here = os.path.abspath(os.path.dirname(__file__))

# get the dependencies and installs
with open(os.path.join(here, 'requirements.txt'), encoding='utf-8') as f:
    all_reqs = f.read().split('\n')

install_requires = [x.strip() for x in all_reqs if x.strip() and 'git+' not in x]

setup(name='omemirror',
      version=omemirror.version,
      description='Python 3 program to mirror images, files and metadata from an OMERO server',
      license='Apache 2.0',
      packages=find_packages(exclude=['tests']),
      install_requires=install_requires,
      extras_require={'test': ['pytest']},
      python_requires=">=3.8",
      keywords=[
          'microscopy',
          'omero',
          'ome-tiff',
          'ome-xml',
          'tiff',
          'export',
          'mirror',
      ],
      zip_safe=False,
      entry_points={'console_scripts':
                    ['ompull=omemirror.ompull.ompull:main',
                     'ompull_parse_log=omemirror.ompull.parse_log:main',
                     ], },
      )
