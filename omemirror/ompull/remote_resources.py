import json
import time

import requests

from omemirror.ompull.model_types import ModelType

API_VERSION = "v0"

# the batch size for querying model object properties from the server
BATCH_SIZE = 512


class AccessDenied(Exception):
    '''
    The server refused access to the requested content, e.g. by a download policy.
    '''
    pass


def batches(ids, size=BATCH_SIZE):
    ids = sorted(ids)
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


class OmeroRemote:
    '''
    Bundles every remote service that the export pipeline uses: object metadata, relationship
    queries, pixel tiles and original file content.
    '''

    def __init__(self, server_url, token, attempts=5, timeout=60):
        self.server_url = server_url
        if self.server_url[-1] != '/':
            self.server_url += '/'
        self.token = token
        self.attempts = attempts
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers = {'Authorization': 'Token {}'.format(self.token)}

        self.server_config = self.get_server_config()

    def __str__(self):
        string = 'Server: {}\n'.format(self.server_url)
        metadata_str = json.dumps(self.server_config, indent=2)
        string += 'Server configuration:\n{}\n'.format(metadata_str)
        return string

    def _request(self, method, url, **kwargs):
        if url[0] == '/':
            url = url[1:]
        full_url = "{}{}".format(self.server_url, url)

        error = None
        for attempt in range(self.attempts):
            try:
                resp = self.session.request(method, full_url, timeout=self.timeout, **kwargs)
            except requests.RequestException as err:
                error = str(err)
            else:
                if resp.status_code == 403:
                    raise AccessDenied('access to {} refused: {}'.format(full_url, resp.reason))
                if resp.ok:
                    return resp
                error = 'status code {}, error {}'.format(resp.status_code, resp.reason)
            if attempt != self.attempts - 1:
                time.sleep(2**(attempt + 1))

        # we failed all the attempts - deal with the consequences.
        raise ConnectionError('Request {} {} failed: {}'.format(method, full_url, error))

    def get(self, url, headers={}, params=None):
        return self._request('GET', url, headers=headers, params=params)

    def post(self, url, payload):
        return self._request('POST', url, json=payload, headers={'Accept': 'application/json'})

    def get_server_config(self):
        url = "api/{}/config/".format(API_VERSION)
        return self.get(url, {'Accept': 'application/json'}).json()

    def get_lsid_format(self):
        return 'urn:lsid:{}:{{}}:{}_{{}}:{{}}'.format(
            self.server_config['authority'], self.server_config['database_uuid'])

    def get_pixels(self, image_id):
        url = "api/{}/images/{}/pixels/".format(API_VERSION, image_id)
        return self.get(url, {'Accept': 'application/json'}).json()

    def get_tile_size(self, pixels_id):
        # the server dictates its own tile granularity
        url = "api/{}/pixels/{}/tile_size/".format(API_VERSION, pixels_id)
        size = self.get(url, {'Accept': 'application/json'}).json()
        return size['width'], size['height']

    def get_tile(self, pixels_id, tile):
        url = "api/{}/pixels/{}/tile/{}/{}/{}/".format(
            API_VERSION, pixels_id, tile.z, tile.c, tile.t)
        params = {'x': tile.x, 'y': tile.y, 'w': tile.w, 'h': tile.h}
        return self.get(url, {'Accept': 'application/octet-stream'}, params=params).content

    def get_file_size(self, file_id):
        url = "api/{}/files/{}/".format(API_VERSION, file_id)
        return self.get(url, {'Accept': 'application/json'}).json()['size']

    def read_file(self, file_id, offset, length):
        url = "api/{}/files/{}/download/".format(API_VERSION, file_id)
        byte_range = 'bytes={}-{}'.format(offset, offset + length - 1)
        resp = self.get(url, {'Range': byte_range})
        if offset > 0 and resp.status_code != 206:
            # the range was ignored, the content starts at the beginning of the file
            raise ConnectionError('Range {} of file {} not honoured, status code {}'.format(
                byte_range, file_id, resp.status_code))
        return resp.content

    def projection(self, query, ids):
        url = "api/{}/query/{}/".format(API_VERSION, query)
        rows = []
        for id_batch in batches(ids):
            rows.extend(self.post(url, {'ids': id_batch}).json()['results'])
        return rows

    def query_links(self, relationship, ids):
        return [(parent, child) for parent, child in self.projection('links/' + relationship, ids)]

    def get_objects(self, model_type, ids):
        url = "api/{}/objects/{}/".format(API_VERSION, ModelType(model_type).value)
        objects = []
        for id_batch in batches(ids):
            objects.extend(self.post(url, {'ids': id_batch}).json()['data'])
        return objects
