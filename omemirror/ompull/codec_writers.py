'''
Write assembled pixel planes as TIFF or OME-TIFF
'''

import sys
import xml.etree.ElementTree as ET
from pathlib import Path

import numpy as np
import tifffile as tiff

OME_NS = 'http://www.openmicroscopy.org/Schemas/OME/2016-06'

# OMERO pixel types, the server sends tile bytes big-endian
PIXEL_TYPES = {
    'int8': 'int8',
    'uint8': 'uint8',
    'int16': 'int16',
    'uint16': 'uint16',
    'int32': 'int32',
    'uint32': 'uint32',
    'float': 'float32',
    'double': 'float64',
}


def get_dtype(pixel_type):
    try:
        return np.dtype(PIXEL_TYPES[pixel_type])
    except KeyError:
        raise ValueError('unsupported pixel type: {}'.format(pixel_type))


class TiffPlaneWriter:
    '''
    Buffers one plane at a time from its tiles and writes it as the next page of a BigTIFF file.
    Planes must arrive in order starting from zero.
    '''

    # accepts the tile size for the container's own tiling
    is_tiled = True

    def __init__(self, path, pixels):
        self.path = Path(path)
        self.pixels = pixels
        self.size_x = pixels['size_x']
        self.size_y = pixels['size_y']
        self.plane_count = pixels['size_z'] * pixels['size_c'] * pixels['size_t']
        self.dtype = get_dtype(pixels['type'])
        self.tile_size = None

        self._plane = None
        self._plane_index = None
        self._planes_written = 0

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._tiff = tiff.TiffWriter(str(self.path), bigtiff=True, ome=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, *exc):
        if exc_type is None:
            self.close()
        else:
            self._tiff.close()

    def get_description(self):
        return None

    def save_tile(self, plane_index, data, x, y, w, h, tile_size=None):
        if plane_index != self._plane_index:
            self._write_plane()
            if plane_index != self._planes_written or plane_index >= self.plane_count:
                raise ValueError('plane {} out of order for {}, expected plane {} of {}'.format(
                    plane_index, self.path, self._planes_written, self.plane_count))
            self._plane = np.zeros((self.size_y, self.size_x), dtype=self.dtype)
            self._plane_index = plane_index
        if tile_size is not None:
            self.tile_size = tile_size

        tile = np.frombuffer(data, dtype=self.dtype.newbyteorder('>'))
        if tile.size != w * h:
            raise ValueError('tile at ({}, {}) has {} pixels, expected {}x{}'.format(x, y, tile.size, w, h))
        self._plane[y:y + h, x:x + w] = tile.reshape(h, w)

    def _write_plane(self):
        if self._plane is None:
            return

        options = {'photometric': 'minisblack', 'metadata': None}
        if self.tile_size is not None and all(size % 16 == 0 for size in self.tile_size):
            # tifffile takes (length, width)
            options['tile'] = (self.tile_size[1], self.tile_size[0])
        if self._planes_written == 0:
            description = self.get_description()
            if description is not None:
                options['description'] = description

        self._tiff.write(self._plane, **options)
        self._planes_written += 1
        self._plane = None
        self._plane_index = None

    def close(self):
        self._write_plane()
        self._tiff.close()
        if self._planes_written != self.plane_count:
            raise ValueError('wrote {} of {} planes to {}'.format(
                self._planes_written, self.plane_count, self.path))


class OmeTiffPlaneWriter(TiffPlaneWriter):
    '''
    As TiffPlaneWriter but the first page's description is an OME-XML document
    with a single TiffData covering every page in the dimension order.
    '''

    def get_description(self):
        ET.register_namespace('', OME_NS)
        pixels = self.pixels

        ome = ET.Element('{%s}OME' % OME_NS)
        image = ET.SubElement(ome, '{%s}Image' % OME_NS, {
            'ID': 'Image:0',
            'Name': str(pixels.get('name', self.path.name)),
        })
        pixels_element = ET.SubElement(image, '{%s}Pixels' % OME_NS, {
            'ID': 'Pixels:0',
            'DimensionOrder': pixels['dimension_order'],
            'Type': pixels['type'],
            'SizeX': str(pixels['size_x']),
            'SizeY': str(pixels['size_y']),
            'SizeZ': str(pixels['size_z']),
            'SizeC': str(pixels['size_c']),
            'SizeT': str(pixels['size_t']),
            'BigEndian': 'true' if sys.byteorder == 'big' else 'false',
        })
        for channel in range(pixels['size_c']):
            ET.SubElement(pixels_element, '{%s}Channel' % OME_NS, {
                'ID': 'Channel:0:{}'.format(channel),
                'SamplesPerPixel': '1',
            })
        ET.SubElement(pixels_element, '{%s}TiffData' % OME_NS)

        return ET.tostring(ome, encoding='unicode')
