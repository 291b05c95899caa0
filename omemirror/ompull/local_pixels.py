'''
Download an image's pixels tile by tile into a resumable local store, then assemble the
stored tiles into image files
'''

from pathlib import Path

from tqdm import tqdm

from omemirror.ompull.codec_writers import OmeTiffPlaneWriter, TiffPlaneWriter, get_dtype
from omemirror.ompull.export_job import get_formatted_datetime
from omemirror.ompull.file_io import INT_BYTES, FileIO, TruncatedFileError
from omemirror.ompull.model_types import ModelType
from omemirror.ompull.tiles import TileIterator

# flush the tile store to disk after this many downloaded tiles
TILES_PER_FLUSH = 64

# file type -> (export file name, writer class)
EXPORT_FORMATS = {
    'tiff': ('image.tiff', TiffPlaneWriter),
    'ome-tiff': ('image.ome.tiff', OmeTiffPlaneWriter),
}


class LocalPixels:
    '''
    The tile store holds the tile count then one length per tile, followed by the
    compressed tiles in order. A length of zero marks a tile not yet downloaded.
    '''

    def __init__(self, pixels, tile_file, remote, job=None):
        self.pixels = pixels
        self.pixels_id = pixels['id']
        self.tile_file = Path(tile_file)
        self.remote = remote
        self.job = job

        ordering = pixels['dimension_order']
        if not ordering.startswith('XY'):
            raise ValueError('planes must be contiguous, not dimension order {}'.format(ordering))
        self.bytes_per_pixel = get_dtype(pixels['type']).itemsize

        # the server decides the tile size
        self.tile_size = tuple(remote.get_tile_size(self.pixels_id))
        self.tiles = TileIterator(pixels['size_x'], pixels['size_y'], pixels['size_z'],
                                  pixels['size_c'], pixels['size_t'],
                                  self.tile_size[0], self.tile_size[1], ordering)
        self.tile_count = len(self.tiles)
        self.header_bytes = (self.tile_count + 1) * INT_BYTES

    def send_msg(self, msg):
        if self.job is not None:
            self.job.send_msg(msg)

    def is_stale(self):
        if not self.tile_file.exists():
            return False
        if self.tile_file.stat().st_size < self.header_bytes:
            return True
        with FileIO(self.tile_file) as store:
            return store.read_int() != self.tile_count

    def read_lengths(self, store):
        store.seek(0)
        count = store.read_int()
        if count != self.tile_count:
            raise TruncatedFileError('tile store {} has {} tiles, expected {}'.format(
                self.tile_file, count, self.tile_count))
        return [store.read_int() for _ in range(self.tile_count)]

    def download_tiles(self):
        '''
        Fetch every tile not already in the store. Returns the number of tiles fetched.
        '''
        self.tile_file.parent.mkdir(parents=True, exist_ok=True)

        # at most one discard per call
        if self.is_stale():
            self.send_msg('{} Discarding stale tile store {}'.format(get_formatted_datetime(), self.tile_file))
            self.tile_file.unlink()

        fetched = 0
        with FileIO(self.tile_file, writable=True) as store:
            if self.tile_file.stat().st_size == 0:
                store.write_int(self.tile_count)
                for _ in range(self.tile_count):
                    store.write_int(0)
                store.flush()
            lengths = self.read_lengths(store)

            position = self.header_bytes
            missing = False
            for index, tile in enumerate(tqdm(self.tiles, total=self.tile_count,
                                              desc='Pixels:{}'.format(self.pixels_id))):
                # payloads follow in tile order so nothing after a gap can be trusted
                if lengths[index] and not missing:
                    position += lengths[index]
                    continue
                missing = True

                data = self.remote.get_tile(self.pixels_id, tile)
                expected = tile.w * tile.h * self.bytes_per_pixel
                if len(data) != expected:
                    raise ValueError('{} of pixels {} has {} bytes, expected {}'.format(
                        tile, self.pixels_id, len(data), expected))

                store.seek(position)
                store.write_bytes(data)
                end = store.tell()
                store.seek((index + 1) * INT_BYTES)
                store.write_int(end - position)
                position = end

                fetched += 1
                if fetched % TILES_PER_FLUSH == 0:
                    store.flush()
            store.flush()

        return fetched

    def write_tiles(self, writer, keep_tiles=False):
        '''
        Pass every stored tile to the writer in download order, then close the writer.
        Returns the number of planes written.
        '''
        # only tiling writers get told the tile size
        tile_size = self.tile_size if getattr(writer, 'is_tiled', False) else None

        plane_index = -1
        with FileIO(self.tile_file) as store, writer:
            lengths = self.read_lengths(store)
            if not all(lengths):
                raise TruncatedFileError('tile store {} is missing {} tiles'.format(
                    self.tile_file, lengths.count(0)))

            previous = None
            for tile, length in zip(self.tiles, lengths):
                if not tile.is_same_plane(previous):
                    plane_index += 1
                writer.save_tile(plane_index, store.read_bytes(length),
                                 tile.x, tile.y, tile.w, tile.h, tile_size)
                previous = tile

        if not keep_tiles:
            self.tile_file.unlink()
        return plane_index + 1


def export_pixels(remote, local_paths, job, image_id, file_types):
    '''
    Write the image's pixels in each of the wanted file types that are not already exported.
    Returns the files written.
    '''
    destinations = []
    for file_type, (name, writer_class) in sorted(EXPORT_FORMATS.items()):
        if file_type in file_types:
            destinations.append((local_paths.get_export_file(ModelType.IMAGE, image_id, name), writer_class))
    if not destinations:
        return []

    tile_file = local_paths.get_tile_file(image_id)
    if tile_file.exists():
        # an earlier assembly did not finish
        for destination, _ in destinations:
            if destination.exists():
                job.send_msg('{} Discarding partial export {}'.format(get_formatted_datetime(), destination))
                destination.unlink()
    else:
        destinations = [(destination, writer_class) for destination, writer_class in destinations
                        if not destination.exists()]
        if not destinations:
            job.send_msg('Pixels of {}:{} already exported'.format(ModelType.IMAGE, image_id))
            return []

    pixels = remote.get_pixels(image_id)
    local_pixels = LocalPixels(pixels, tile_file, remote, job)

    job.send_msg('{} Downloading {} tiles of {}:{}'.format(
        get_formatted_datetime(), local_pixels.tile_count, ModelType.IMAGE, image_id))
    fetched = local_pixels.download_tiles()
    job.send_msg('{} Fetched {} of {} tiles of {}:{}'.format(
        get_formatted_datetime(), fetched, local_pixels.tile_count, ModelType.IMAGE, image_id))

    written = []
    for index, (destination, writer_class) in enumerate(destinations):
        is_last = index == len(destinations) - 1
        local_pixels.write_tiles(writer_class(destination, pixels), keep_tiles=not is_last)
        job.send_msg('{} Wrote {}'.format(get_formatted_datetime(), destination))
        written.append(destination)
    return written
