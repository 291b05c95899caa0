import numpy as np
import pytest
import tifffile

from fake_remote import FakeRemote, RecordingJob
from omemirror.ompull.file_io import INT_BYTES, FileIO, TruncatedFileError
from omemirror.ompull.local_paths import LocalPaths
from omemirror.ompull.local_pixels import LocalPixels, export_pixels
from omemirror.ompull.model_types import ModelType


class RecordingWriter:
    def __init__(self, is_tiled=False):
        self.is_tiled = is_tiled
        self.saved = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, *exc):
        self.closed = True

    def save_tile(self, plane_index, data, x, y, w, h, tile_size=None):
        self.saved.append((plane_index, x, y, w, h, tile_size, len(data)))


def read_header(path, count):
    with FileIO(path) as f:
        return [f.read_int() for _ in range(count + 1)]


def read_pages(path):
    with tifffile.TiffFile(str(path)) as tif:
        return [page.asarray() for page in tif.pages]


class TestLocalPixels:
    def setup_method(self):
        self.remote = FakeRemote(tile_size=(128, 128))
        self.pixels = self.remote.add_image(5, 50, 300, 200)

    def test_download_example_image(self, tmp_path):
        tile_file = tmp_path / 'Export' / '.image.tiles'
        local_pixels = LocalPixels(self.pixels, tile_file, self.remote)

        assert local_pixels.tile_count == 6
        assert local_pixels.download_tiles() == 6

        header = read_header(tile_file, 6)
        assert header[0] == 6
        assert all(length > 0 for length in header[1:])
        assert [tile for _, tile in self.remote.tile_requests] == list(local_pixels.tiles)

    def test_resume_complete_store(self, tmp_path):
        tile_file = tmp_path / '.image.tiles'
        LocalPixels(self.pixels, tile_file, self.remote).download_tiles()
        requests = len(self.remote.tile_requests)

        assert LocalPixels(self.pixels, tile_file, self.remote).download_tiles() == 0
        assert len(self.remote.tile_requests) == requests

    def test_resume_interrupted_download(self, tmp_path):
        tile_file = tmp_path / '.image.tiles'
        self.remote.fail_after_tiles = 4

        with pytest.raises(ConnectionError):
            LocalPixels(self.pixels, tile_file, self.remote).download_tiles()
        assert tile_file.exists()
        assert read_header(tile_file, 6)[1:].count(0) == 2

        self.remote.fail_after_tiles = None
        assert LocalPixels(self.pixels, tile_file, self.remote).download_tiles() == 2
        assert all(read_header(tile_file, 6)[1:])

    def test_stale_count_discarded(self, tmp_path):
        tile_file = tmp_path / '.image.tiles'
        local_pixels = LocalPixels(self.pixels, tile_file, self.remote)
        local_pixels.download_tiles()

        with FileIO(tile_file, writable=True) as f:
            f.write_int(5)

        job = RecordingJob()
        local_pixels = LocalPixels(self.pixels, tile_file, self.remote, job)
        assert local_pixels.download_tiles() == 6
        header = read_header(tile_file, 6)
        assert header[0] == 6
        assert all(header[1:])
        assert any('stale' in msg for msg in job.messages)

    def test_short_header_discarded(self, tmp_path):
        tile_file = tmp_path / '.image.tiles'
        tile_file.write_bytes(b'\x00\x00\x00\x06\x00')

        assert LocalPixels(self.pixels, tile_file, self.remote).download_tiles() == 6

    def test_assembly_in_download_order(self, tmp_path):
        tile_file = tmp_path / '.image.tiles'
        local_pixels = LocalPixels(self.pixels, tile_file, self.remote)
        local_pixels.download_tiles()

        writer = RecordingWriter()
        assert local_pixels.write_tiles(writer) == 1

        assert writer.closed
        assert [(x, y, w, h) for _, x, y, w, h, _, _ in writer.saved] == [
            (t.x, t.y, t.w, t.h) for t in local_pixels.tiles]
        assert set(plane for plane, *_ in writer.saved) == {0}
        assert all(size == w * h * 2 for _, _, _, w, h, _, size in writer.saved)
        assert not tile_file.exists()

    def test_tile_size_only_for_tiled_writers(self, tmp_path):
        tile_file = tmp_path / '.image.tiles'
        local_pixels = LocalPixels(self.pixels, tile_file, self.remote)
        local_pixels.download_tiles()

        plain = RecordingWriter()
        local_pixels.write_tiles(plain, keep_tiles=True)
        tiled = RecordingWriter(is_tiled=True)
        local_pixels.write_tiles(tiled)

        assert all(tile_size is None for *_, tile_size, _ in plain.saved)
        assert all(tile_size == (128, 128) for *_, tile_size, _ in tiled.saved)

    def test_plane_transitions(self, tmp_path):
        pixels = self.remote.add_image(6, 60, 40, 30, size_z=2, size_c=3)
        local_pixels = LocalPixels(pixels, tmp_path / '.image.tiles', self.remote)
        local_pixels.download_tiles()

        writer = RecordingWriter()
        assert local_pixels.write_tiles(writer) == 6
        assert [plane for plane, *_ in writer.saved] == [0, 1, 2, 3, 4, 5]

    def test_incomplete_store_not_assembled(self, tmp_path):
        tile_file = tmp_path / '.image.tiles'
        self.remote.fail_after_tiles = 3
        local_pixels = LocalPixels(self.pixels, tile_file, self.remote)
        with pytest.raises(ConnectionError):
            local_pixels.download_tiles()

        with pytest.raises(TruncatedFileError):
            local_pixels.write_tiles(RecordingWriter())
        assert tile_file.exists()

    def test_wrong_tile_length(self, tmp_path):
        self.remote.get_tile = lambda pixels_id, tile: b'\x00' * 10

        with pytest.raises(ValueError):
            LocalPixels(self.pixels, tmp_path / '.image.tiles', self.remote).download_tiles()

    def test_planes_must_be_contiguous(self, tmp_path):
        pixels = dict(self.pixels, dimension_order='XZYCT')

        with pytest.raises(ValueError):
            LocalPixels(pixels, tmp_path / '.image.tiles', self.remote)

    def test_header_layout(self, tmp_path):
        local_pixels = LocalPixels(self.pixels, tmp_path / '.image.tiles', self.remote)
        assert local_pixels.header_bytes == 7 * INT_BYTES


class TestExportPixels:
    def setup_method(self):
        self.remote = FakeRemote(tile_size=(32, 16))
        self.remote.add_image(5, 50, 70, 40, size_z=2, size_c=2)
        self.job = RecordingJob()

    def expected_planes(self):
        return [self.remote.get_plane(50, z, c, 0) for c in range(2) for z in range(2)]

    def test_tiff_and_ome_tiff(self, tmp_path):
        local_paths = LocalPaths(tmp_path)
        written = export_pixels(self.remote, local_paths, self.job, 5, {'tiff', 'ome-tiff'})

        tiff_file = local_paths.get_export_file(ModelType.IMAGE, 5, 'image.tiff')
        ome_tiff_file = local_paths.get_export_file(ModelType.IMAGE, 5, 'image.ome.tiff')
        assert sorted(written) == sorted([tiff_file, ome_tiff_file])
        assert not local_paths.get_tile_file(5).exists()

        for path in (tiff_file, ome_tiff_file):
            pages = read_pages(path)
            assert len(pages) == 4
            for page, expected in zip(pages, self.expected_planes()):
                np.testing.assert_array_equal(page, expected)

        with tifffile.TiffFile(str(ome_tiff_file)) as tif:
            description = tif.pages[0].description
        assert 'DimensionOrder="XYZCT"' in description
        assert description.count('TiffData') == 1

        # each tile downloaded once for both files
        assert len(self.remote.tile_requests) == 3 * 3 * 4

    def test_tiling_hint_used_for_multiples_of_16(self, tmp_path):
        local_paths = LocalPaths(tmp_path)
        export_pixels(self.remote, local_paths, self.job, 5, {'tiff'})

        with tifffile.TiffFile(str(local_paths.get_export_file(ModelType.IMAGE, 5, 'image.tiff'))) as tif:
            assert tif.pages[0].is_tiled
            assert (tif.pages[0].tilewidth, tif.pages[0].tilelength) == (32, 16)

    def test_no_tiling_otherwise(self, tmp_path):
        self.remote.tile_size = (30, 20)
        local_paths = LocalPaths(tmp_path)
        export_pixels(self.remote, local_paths, self.job, 5, {'tiff'})

        with tifffile.TiffFile(str(local_paths.get_export_file(ModelType.IMAGE, 5, 'image.tiff'))) as tif:
            assert not tif.pages[0].is_tiled

    def test_already_exported(self, tmp_path):
        local_paths = LocalPaths(tmp_path)
        export_pixels(self.remote, local_paths, self.job, 5, {'tiff'})
        requests = len(self.remote.tile_requests)

        assert export_pixels(self.remote, local_paths, self.job, 5, {'tiff'}) == []
        assert len(self.remote.tile_requests) == requests
        assert self.remote.pixels_requests == [5]

    def test_partial_assembly_redone(self, tmp_path):
        local_paths = LocalPaths(tmp_path)
        pixels = self.remote.get_pixels(5)
        LocalPixels(pixels, local_paths.get_tile_file(5), self.remote).download_tiles()
        tiff_file = local_paths.get_export_file(ModelType.IMAGE, 5, 'image.tiff')
        tiff_file.write_bytes(b'partial')
        requests = len(self.remote.tile_requests)

        assert export_pixels(self.remote, local_paths, self.job, 5, {'tiff'}) == [tiff_file]
        assert len(self.remote.tile_requests) == requests
        assert len(read_pages(tiff_file)) == 4

    def test_nothing_wanted(self, tmp_path):
        assert export_pixels(self.remote, LocalPaths(tmp_path), self.job, 5, {'binary'}) == []
        assert self.remote.pixels_requests == []
