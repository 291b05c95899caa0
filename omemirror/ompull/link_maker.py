'''
Manage the symbolic links among the local mirror of the server repository and exported model objects
'''

import os
from pathlib import Path, PurePath


def link(from_path, to_path):
    '''
    Create a relative symbolic link at from_path pointing to to_path, creating parent directories
    where necessary. Nothing is done if from_path is already occupied.
    Returns True if a link was created.
    '''
    from_path = Path(from_path)
    if os.path.lexists(str(from_path)):
        return False
    from_path.parent.mkdir(parents=True, exist_ok=True)
    relative = os.path.relpath(str(to_path), str(from_path.parent))
    try:
        os.symlink(relative, str(from_path))
    except FileExistsError:
        return False
    return True


def shorten_paths(paths):
    '''
    Remove the longest common leading sequence of components from the given paths.
    A single path is shortened to its last component, never to nothing.

    >>> shorten_paths(['p1/p2/f1', 'p1/p2/f2'])
    [PurePosixPath('f1'), PurePosixPath('f2')]
    '''
    parts = [PurePath(path).parts for path in paths]
    if not parts:
        return []
    shortest = min(len(p) for p in parts)
    skip = 0
    while skip < shortest and len({p[skip] for p in parts}) == 1:
        skip += 1
    if skip == shortest:
        # keep at least the final component of the shortest path
        skip = max(skip - 1, 0)
    return [PurePath(*p[skip:]) for p in parts]


class LinkMaker:
    def __init__(self, local_paths):
        self.local_paths = local_paths

        # file ID -> canonical location
        self.repository_files = {}
        # ((object type, object ID), file ID) -> location for that object
        self.model_object_files = {}

    def note_repository_file(self, file_id, path):
        self.repository_files[file_id] = Path(path)

    def note_model_object_file(self, object_type, object_id, file_id, path):
        self.model_object_files[((object_type, object_id), file_id)] = Path(path)

    def get_known_files(self, object_type, object_id, file_ids):
        '''
        For those of the given files whose locations are noted both for the repository and for the
        object, the pairs of (object location, repository location).
        '''
        known = []
        for file_id in sorted(file_ids):
            repository_file = self.repository_files.get(file_id)
            object_file = self.model_object_files.get(((object_type, object_id), file_id))
            if repository_file is not None and object_file is not None:
                known.append((object_file, repository_file))
        return known

    def link_repository_files(self, object_type, object_id, file_ids):
        count = 0
        for object_file, repository_file in self.get_known_files(object_type, object_id, file_ids):
            count += link(object_file, repository_file)
        return count

    def link_model_object_files(self, from_type, from_id, to_type, to_id, file_ids):
        count = 0
        for file_id in sorted(file_ids):
            from_file = self.model_object_files.get(((from_type, from_id), file_id))
            to_file = self.model_object_files.get(((to_type, to_id), file_id))
            if from_file is not None and to_file is not None:
                count += link(from_file, to_file)
        return count

    def link_model_objects(self, from_type, from_id, to_type, to_id):
        # the container's directory links to the contained object's directory
        from_directory = self.local_paths.get_model_object_directory(from_type, from_id, to_type, to_id)
        to_directory = self.local_paths.get_model_object_directory(to_type, to_id)
        to_directory.mkdir(parents=True, exist_ok=True)
        return link(from_directory, to_directory)

    def link_containment(self, containment):
        count = 0
        for parent_type, parent_id, child_type, child_id in containment.edges():
            count += self.link_model_objects(parent_type, parent_id, child_type, child_id)
        return count
