'''
Map images to their filesets, pixels and original files, and decide where each file goes locally
'''

from collections import defaultdict
from pathlib import PurePosixPath

from omemirror.ompull.link_maker import shorten_paths
from omemirror.ompull.local_paths import sanitize, split_path
from omemirror.ompull.model_types import ModelType


def split_relative(relative):
    # (path, name) for LocalPaths from a relative path
    relative = PurePosixPath(relative)
    return '/'.join(relative.parts[:-1]), relative.name


class FileMapper:
    def __init__(self, remote, local_paths, image_ids=()):
        self.remote = remote
        self.local_paths = local_paths

        self.image_filesets = {}
        self.fileset_images = defaultdict(set)
        # fileset -> file ID -> path relative to the fileset, shortened
        self.fileset_files = defaultdict(dict)
        self.image_pixels = {}
        # pixels -> file ID -> name
        self.pixels_files = defaultdict(dict)
        # file ID -> canonical location in the repository mirror
        self.repository_files = {}

        self.wanted_images = set()
        self.want_images(image_ids)

    def want_images(self, image_ids):
        new_images = set(image_ids) - self.wanted_images
        if not new_images:
            return set()

        new_filesets = set()
        for fileset_id, image_id in self.remote.projection('filesets_of_images', new_images):
            self.image_filesets[image_id] = fileset_id
            self.fileset_images[fileset_id].add(image_id)
            if fileset_id not in self.fileset_files:
                new_filesets.add(fileset_id)
        if new_filesets:
            self._map_filesets(new_filesets)

        new_pixels = set()
        for image_id, pixels_id in self.remote.projection('pixels_of_images', new_images):
            self.image_pixels[image_id] = pixels_id
            if pixels_id not in self.pixels_files:
                new_pixels.add(pixels_id)
        if new_pixels:
            for pixels_id, file_id, name in self.remote.projection('files_of_pixels', new_pixels):
                self.pixels_files[pixels_id][file_id] = sanitize(name)
                self.repository_files[file_id] = self.local_paths.get_legacy_repository_file(file_id, name)

        self.wanted_images.update(new_images)
        return new_images

    def _map_filesets(self, fileset_ids):
        entries = defaultdict(list)
        for fileset_id, file_id, repository, path, name in self.remote.projection('fileset_entries', fileset_ids):
            entries[fileset_id].append((file_id, repository, path, name))

        for fileset_id in fileset_ids:
            structured = []
            legacy = []
            for file_id, repository, path, name in entries[fileset_id]:
                if repository is None:
                    self.repository_files[file_id] = self.local_paths.get_legacy_repository_file(file_id, name)
                    legacy.append((file_id, sanitize(name)))
                else:
                    self.repository_files[file_id] = self.local_paths.get_repository_file(repository, path, name)
                    structured.append((file_id, PurePosixPath(*split_path(path), sanitize(name))))

            taken = set()
            shortened = shorten_paths([path for _, path in structured])
            for (file_id, _), short_path in zip(structured, shortened):
                self.fileset_files[fileset_id][file_id] = PurePosixPath(short_path)
                taken.add(PurePosixPath(short_path))

            # legacy files have no path structure so are placed by name alone, under their ID if that name is taken
            for file_id, name in sorted(legacy):
                path = PurePosixPath(name)
                if path in taken:
                    path = PurePosixPath(str(file_id), name)
                self.fileset_files[fileset_id][file_id] = path
                taken.add(path)

    def complete_filesets(self):
        '''
        Add every image that shares a fileset with a wanted image. Returns the images added.
        '''
        fileset_ids = set(self.image_filesets[image_id] for image_id in self.wanted_images
                          if image_id in self.image_filesets)
        if not fileset_ids:
            return set()
        image_ids = set(image_id for _, image_id in self.remote.projection('images_of_filesets', fileset_ids))
        return self.want_images(image_ids)

    def get_fileset_id(self, image_id):
        return self.image_filesets.get(image_id)

    def get_pixels_id(self, image_id):
        return self.image_pixels.get(image_id)

    def get_repository_file(self, file_id):
        return self.repository_files[file_id]

    def get_binary_file_ids(self, image_id):
        fileset_id = self.get_fileset_id(image_id)
        if fileset_id is None:
            return set()
        return set(self.fileset_files[fileset_id])

    def get_companion_file_ids(self, image_id):
        pixels_id = self.get_pixels_id(image_id)
        if pixels_id is None:
            return set()
        return set(self.pixels_files[pixels_id])

    def get_fileset_file(self, fileset_id, file_id):
        path, name = split_relative(self.fileset_files[fileset_id][file_id])
        return self.local_paths.get_model_object_file(ModelType.FILESET, fileset_id, path, name)

    def get_image_file(self, image_id, file_id):
        fileset_id = self.get_fileset_id(image_id)
        if fileset_id is not None and file_id in self.fileset_files[fileset_id]:
            path, name = split_relative(self.fileset_files[fileset_id][file_id])
            return self.local_paths.get_model_object_file(ModelType.IMAGE, image_id, path, name)
        name = self.pixels_files[self.get_pixels_id(image_id)][file_id]
        return self.local_paths.get_model_object_file(ModelType.IMAGE, image_id, '', name, is_companion=True)

    def get_wanted_files(self, binary=True, companion=True):
        '''
        file ID -> the images that want it, for the wanted images
        '''
        wanted = defaultdict(set)
        for image_id in sorted(self.wanted_images):
            file_ids = set()
            if binary:
                file_ids |= self.get_binary_file_ids(image_id)
            if companion:
                file_ids |= self.get_companion_file_ids(image_id)
            for file_id in file_ids:
                wanted[file_id].add(image_id)
        return wanted
