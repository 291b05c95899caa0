'''
Local filesystem layout of the mirror
'''

import re
from pathlib import Path, PurePosixPath

from omemirror.ompull.model_types import ModelType

REPOSITORY = 'Repository'
LEGACY = 'Legacy'
BINARY = 'Binary'
COMPANION = 'Companion'
METADATA = 'Metadata'
EXPORT = 'Export'

TILE_FILE = '.image.tiles'

UNSAFE_CHARACTERS = re.compile(r'[\x00-\x1f/\\:]')


def sanitize(component):
    # make a path component from the server safe for use locally
    component = UNSAFE_CHARACTERS.sub('_', component)
    if component in ('', '.', '..'):
        return '_' * max(1, len(component))
    return component


def split_path(path):
    # a server path, with '/' separators, as sanitized local components
    return [sanitize(part) for part in PurePosixPath(path).parts if part not in ('/', '')]


class LocalPaths:
    def __init__(self, base='.'):
        self.base = Path(base)

    def get_model_object_directory(self, object_type, object_id, child_type=None, child_id=None):
        directory = self.base / str(object_type) / str(object_id)
        if child_type is not None:
            directory = directory / str(child_type) / str(child_id)
        return directory

    def get_model_object_file(self, object_type, object_id, path, name, is_companion=False):
        directory = self.get_model_object_directory(object_type, object_id)
        directory = directory / (COMPANION if is_companion else BINARY)
        return directory.joinpath(*split_path(path)) / sanitize(name)

    def get_metadata_file(self, object_type, object_id):
        directory = self.get_model_object_directory(object_type, object_id)
        return directory / METADATA / '{}.ome.xml'.format(object_type)

    def get_export_file(self, object_type, object_id, name):
        return self.get_model_object_directory(object_type, object_id) / EXPORT / name

    def get_tile_file(self, image_id):
        return self.get_export_file(ModelType.IMAGE, image_id, TILE_FILE)

    def get_repository_file(self, repository, path, name):
        directory = self.base / REPOSITORY / sanitize(repository)
        return directory.joinpath(*split_path(path)) / sanitize(name)

    def get_legacy_repository_file(self, file_id, name):
        return self.base / REPOSITORY / LEGACY / str(file_id) / sanitize(name)
