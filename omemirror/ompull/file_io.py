'''
Positioned read/write of integers and compressed byte blocks, the basis of the resumable tile store
'''

import os
import struct
from pathlib import Path

import blosc

# header integers are 4-byte signed big-endian
INT_FORMAT = '>i'
INT_BYTES = struct.calcsize(INT_FORMAT)


class TruncatedFileError(IOError):
    pass


class FileIO:
    '''
    A file handle opened either read-only or read-write (created if absent).
    Not thread-safe.
    '''

    def __init__(self, path, writable=False):
        self.path = Path(path)
        if not writable:
            mode = 'rb'
        elif self.path.exists():
            mode = 'r+b'
        else:
            mode = 'w+b'
        self._file = open(str(self.path), mode)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _read_exactly(self, size):
        data = self._file.read(size)
        if len(data) < size:
            raise TruncatedFileError('could read only {} bytes, not {}, from {}'.format(
                len(data), size, self.path))
        return data

    def read_int(self):
        return struct.unpack(INT_FORMAT, self._read_exactly(INT_BYTES))[0]

    def write_int(self, n):
        self._file.write(struct.pack(INT_FORMAT, n))

    def read_bytes(self, size):
        # size is the compressed length, as recorded by the caller
        try:
            return blosc.decompress(self._read_exactly(size))
        except (RuntimeError, ValueError) as err:
            raise TruncatedFileError('corrupt block of {} bytes in {}: {}'.format(
                size, self.path, err))

    def write_bytes(self, data):
        self._file.write(blosc.compress(bytes(data), typesize=1))

    def seek(self, position):
        self._file.seek(position)

    def tell(self):
        return self._file.tell()

    def flush(self):
        self._file.flush()
        os.fsync(self._file.fileno())

    def close(self):
        self._file.close()
