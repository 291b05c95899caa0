import pytest

from fake_remote import FakeRemote, RecordingJob
from omemirror.ompull.content_fetcher import fetch_file


class TestFetchFile:
    def setup_method(self):
        self.remote = FakeRemote()
        self.content = bytes(range(200)) * 3
        self.remote.files[7] = self.content
        self.job = RecordingJob()

    def test_fresh_download(self, tmp_path):
        destination = tmp_path / 'Repository' / 'Legacy' / '7' / 'a.dv'

        assert fetch_file(self.remote, 7, destination, self.job, batch_size=256)
        assert destination.read_bytes() == self.content
        assert self.remote.read_requests == [(7, 0, 256), (7, 256, 256), (7, 512, 88)]

    def test_complete_file_untouched(self, tmp_path):
        destination = tmp_path / 'a.dv'
        destination.write_bytes(self.content)

        assert fetch_file(self.remote, 7, destination, self.job)
        assert self.remote.read_requests == []

    def test_resume_from_local_length(self, tmp_path):
        destination = tmp_path / 'a.dv'
        destination.write_bytes(self.content[:300])

        assert fetch_file(self.remote, 7, destination, self.job, batch_size=256)
        assert destination.read_bytes() == self.content
        assert self.remote.read_requests == [(7, 300, 256), (7, 556, 44)]

    def test_longer_local_file_replaced(self, tmp_path):
        destination = tmp_path / 'a.dv'
        destination.write_bytes(self.content + b'extra')

        assert fetch_file(self.remote, 7, destination, self.job)
        assert destination.read_bytes() == self.content
        assert self.remote.read_requests[0][1] == 0

    def test_access_denied_skips(self, tmp_path):
        self.remote.denied_files.add(7)
        destination = tmp_path / 'a.dv'

        assert not fetch_file(self.remote, 7, destination, self.job)
        assert not destination.exists()
        assert any(', skipping' in msg for msg in self.job.messages)

    def test_empty_read_fails(self, tmp_path):
        self.remote.read_file = lambda file_id, offset, length: b''

        with pytest.raises(ConnectionError):
            fetch_file(self.remote, 7, tmp_path / 'a.dv', self.job)

    def test_local_failure_propagates(self, tmp_path):
        blocker = tmp_path / 'Repository'
        blocker.write_bytes(b'not a directory')

        with pytest.raises(OSError):
            fetch_file(self.remote, 7, blocker / 'Legacy' / 'a.dv', self.job)

    def test_empty_file_created(self, tmp_path):
        self.remote.files[8] = b''
        destination = tmp_path / 'Repository' / 'Legacy' / '8' / 'empty.log'

        assert fetch_file(self.remote, 8, destination, self.job)
        assert destination.exists()
        assert destination.read_bytes() == b''
        assert self.remote.read_requests == []
