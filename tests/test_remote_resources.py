import pytest
import requests

from omemirror.ompull import remote_resources
from omemirror.ompull.model_types import ModelType
from omemirror.ompull.remote_resources import AccessDenied, OmeroRemote, batches
from omemirror.ompull.tiles import Tile

CONFIG = {'authority': 'example.org', 'database_uuid': '0a1b2c3d'}


class FakeResponse:
    def __init__(self, status_code=200, body=None, content=b''):
        self.status_code = status_code
        self.ok = status_code < 400
        self.reason = 'OK' if self.ok else 'Bad'
        self.body = body
        self.content = content

    def json(self):
        return self.body


class FakeSession:
    '''
    Answers requests from a queue of responses, the server configuration first
    '''

    def __init__(self):
        self.headers = {}
        self.requests = []
        self.responses = [FakeResponse(body=CONFIG)]

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class TestOmeroRemote:
    def setup_method(self):
        self.session = FakeSession()
        self.sleeps = []

    @pytest.fixture(autouse=True)
    def fake_network(self, monkeypatch):
        monkeypatch.setattr(remote_resources.requests, 'Session', lambda: self.session)
        monkeypatch.setattr(remote_resources.time, 'sleep', self.sleeps.append)

    def make_remote(self, attempts=5):
        return OmeroRemote('https://omero.example.org', 'abc123', attempts=attempts)

    def test_configuration(self):
        rmt = self.make_remote()

        assert rmt.server_url == 'https://omero.example.org/'
        assert rmt.server_config == CONFIG
        assert self.session.headers['Authorization'] == 'Token abc123'
        assert self.session.requests[0][1] == 'https://omero.example.org/api/v0/config/'

    def test_lsid_format(self):
        lsid_format = self.make_remote().get_lsid_format()

        assert lsid_format.format('Image', 5, 12) == 'urn:lsid:example.org:Image:0a1b2c3d_5:12'

    def test_retries_then_succeeds(self):
        rmt = self.make_remote()
        self.session.responses += [
            FakeResponse(500),
            requests.ConnectionError('reset'),
            FakeResponse(body={'size': 42}),
        ]

        assert rmt.get_file_size(7) == 42
        assert self.sleeps == [2, 4]

    def test_all_attempts_fail(self):
        rmt = self.make_remote(attempts=3)
        self.session.responses += [FakeResponse(502)] * 3

        with pytest.raises(ConnectionError):
            rmt.get_file_size(7)
        assert self.sleeps == [2, 4]

    def test_access_denied_not_retried(self):
        rmt = self.make_remote()
        self.session.responses.append(FakeResponse(403))

        with pytest.raises(AccessDenied):
            rmt.read_file(7, 0, 10)
        assert self.sleeps == []

    def test_byte_range(self):
        rmt = self.make_remote()
        self.session.responses.append(FakeResponse(206, content=b'0123456789'))

        assert rmt.read_file(7, 100, 10) == b'0123456789'
        method, url, kwargs = self.session.requests[-1]
        assert url == 'https://omero.example.org/api/v0/files/7/download/'
        assert kwargs['headers']['Range'] == 'bytes=100-109'

    def test_ignored_range(self):
        rmt = self.make_remote()
        self.session.responses.append(FakeResponse(200, content=b'whole file'))

        with pytest.raises(ConnectionError):
            rmt.read_file(7, 100, 10)

    def test_whole_file_from_start(self):
        rmt = self.make_remote()
        self.session.responses.append(FakeResponse(200, content=b'0123456789'))

        assert rmt.read_file(7, 0, 10) == b'0123456789'

    def test_tile_request(self):
        rmt = self.make_remote()
        self.session.responses.append(FakeResponse(content=b'\x00\x01'))

        assert rmt.get_tile(50, Tile(128, 0, 1, 2, 3, 64, 32)) == b'\x00\x01'
        method, url, kwargs = self.session.requests[-1]
        assert url == 'https://omero.example.org/api/v0/pixels/50/tile/1/2/3/'
        assert kwargs['params'] == {'x': 128, 'y': 0, 'w': 64, 'h': 32}

    def test_projection_batches(self):
        rmt = self.make_remote()
        self.session.responses += [
            FakeResponse(body={'results': [[1, 2]]}),
            FakeResponse(body={'results': [[3, 4]]}),
        ]

        assert rmt.projection('pixels_of_images', range(1000)) == [[1, 2], [3, 4]]
        posts = self.session.requests[1:]
        assert len(posts) == 2
        assert [len(kwargs['json']['ids']) for _, _, kwargs in posts] == [512, 488]
        assert all(method == 'POST' for method, _, _ in posts)

    def test_query_links(self):
        rmt = self.make_remote()
        self.session.responses.append(FakeResponse(body={'results': [[5, 9], [5, 10]]}))

        assert rmt.query_links('ImageRoi', {5}) == [(5, 9), (5, 10)]
        assert self.session.requests[-1][1] == 'https://omero.example.org/api/v0/query/links/ImageRoi/'

    def test_get_objects(self):
        rmt = self.make_remote()
        self.session.responses.append(FakeResponse(body={'data': [{'id': 5}]}))

        assert rmt.get_objects(ModelType.IMAGE, [5]) == [{'id': 5}]
        assert self.session.requests[-1][1] == 'https://omero.example.org/api/v0/objects/Image/'


class TestBatches:
    def test_sorted_batches(self):
        assert list(batches({5, 1, 3, 2, 4}, 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert list(batches([], 2)) == []
