import pytest

from omemirror.ompull.file_io import INT_BYTES, FileIO, TruncatedFileError


class TestFileIO:
    def setup_method(self):
        self.payload = bytes(range(256)) * 40

    def test_ints_and_blocks(self, tmp_path):
        path = tmp_path / 'store'
        with FileIO(path, writable=True) as f:
            f.write_int(3)
            f.write_int(-1)
            start = f.tell()
            f.write_bytes(self.payload)
            length = f.tell() - start
            f.flush()

        assert start == 2 * INT_BYTES
        assert length > 0

        with FileIO(path) as f:
            assert f.read_int() == 3
            assert f.read_int() == -1
            assert f.read_bytes(length) == self.payload

    def test_reopen_keeps_content(self, tmp_path):
        path = tmp_path / 'store'
        with FileIO(path, writable=True) as f:
            f.write_int(1)
            f.write_int(2)

        with FileIO(path, writable=True) as f:
            f.seek(INT_BYTES)
            f.write_int(5)

        with FileIO(path) as f:
            assert f.read_int() == 1
            assert f.read_int() == 5

    def test_int_is_big_endian(self, tmp_path):
        path = tmp_path / 'store'
        with FileIO(path, writable=True) as f:
            f.write_int(258)

        assert path.read_bytes() == b'\x00\x00\x01\x02'

    def test_short_int(self, tmp_path):
        path = tmp_path / 'store'
        path.write_bytes(b'\x00\x01')

        with FileIO(path) as f:
            with pytest.raises(TruncatedFileError):
                f.read_int()

    def test_short_block(self, tmp_path):
        path = tmp_path / 'store'
        with FileIO(path, writable=True) as f:
            f.write_bytes(self.payload)
            length = f.tell()

        with open(str(path), 'r+b') as f:
            f.truncate(length // 2)

        with FileIO(path) as f:
            with pytest.raises(TruncatedFileError):
                f.read_bytes(length)

    def test_truncated_is_io_error(self):
        assert issubclass(TruncatedFileError, IOError)

    def test_read_only_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FileIO(tmp_path / 'absent')
