class TruncatingWriter:
    '''
    Passes written bytes through to another stream, omitting a given number of
    bytes from the start and from the end of everything written.
    '''

    def __init__(self, out, initial_skip, final_skip):
        if initial_skip < 0 or final_skip < 0:
            raise ValueError('cannot skip a negative number of bytes')
        self.out = out
        self.initial_skip = initial_skip
        self.final_skip = final_skip

        self._to_skip = initial_skip
        # the latest bytes, any of which may yet be among the final ones
        self._backlog = bytearray()

    def write(self, data):
        size = len(data)
        data = memoryview(data).cast('B')
        if self._to_skip:
            skipped = min(self._to_skip, len(data))
            data = data[skipped:]
            self._to_skip -= skipped

        self._backlog += data
        excess = len(self._backlog) - self.final_skip
        if excess > 0:
            self.out.write(bytes(self._backlog[:excess]))
            del self._backlog[:excess]
        return size

    def finish(self):
        '''
        Check that everything written covered both the initial and the final bytes to omit.
        The final bytes are discarded, the underlying stream is left open.
        '''
        if self._to_skip or len(self._backlog) < self.final_skip:
            raise ValueError('wrote too few bytes to omit {} initial and {} final'.format(
                self.initial_skip, self.final_skip))
        self._backlog = bytearray()
