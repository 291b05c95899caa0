'''
Containment among model objects, either queried from the server or read back from the links on disk
'''

from collections import defaultdict

from omemirror.ompull.model_types import ModelType

# for each container type, the contained types and the relationship that the server queries for them
CONTAINER_QUERIES = {
    ModelType.PROJECT: (
        (ModelType.DATASET, 'ProjectDatasetLink'),
        (ModelType.ANNOTATION, 'ProjectAnnotationLink'),
    ),
    ModelType.DATASET: (
        (ModelType.IMAGE, 'DatasetImageLink'),
        (ModelType.ANNOTATION, 'DatasetAnnotationLink'),
    ),
    ModelType.FOLDER: (
        (ModelType.FOLDER, 'FolderFolder'),
        (ModelType.IMAGE, 'FolderImageLink'),
        (ModelType.ROI, 'FolderRoiLink'),
        (ModelType.ANNOTATION, 'FolderAnnotationLink'),
    ),
    ModelType.EXPERIMENT: (
        (ModelType.IMAGE, 'ExperimentImage'),
    ),
    ModelType.SCREEN: (
        (ModelType.PLATE, 'ScreenPlateLink'),
        (ModelType.ANNOTATION, 'ScreenAnnotationLink'),
    ),
    ModelType.PLATE: (
        (ModelType.IMAGE, 'PlateImage'),
        (ModelType.ANNOTATION, 'PlateAnnotationLink'),
    ),
    ModelType.IMAGE: (
        (ModelType.INSTRUMENT, 'ImageInstrument'),
        (ModelType.ROI, 'ImageRoi'),
        (ModelType.ANNOTATION, 'ImageAnnotationLink'),
    ),
    ModelType.INSTRUMENT: (
        (ModelType.ANNOTATION, 'InstrumentAnnotationLink'),
    ),
    ModelType.ROI: (
        (ModelType.ANNOTATION, 'RoiAnnotationLink'),
    ),
    ModelType.ANNOTATION: (
        (ModelType.ANNOTATION, 'AnnotationAnnotationLink'),
    ),
}


def _check_queries():
    for container_type, queries in CONTAINER_QUERIES.items():
        relationships = [relationship for _, relationship in queries]
        if len(set(relationships)) != len(relationships):
            raise RuntimeError('duplicate relationship queries for {}'.format(container_type))
        if ModelType.FILESET in [child_type for child_type, _ in queries]:
            raise RuntimeError('filesets are mapped separately, not queried as children')


_check_queries()


class Containment:
    '''
    Container to child associations keyed by the pair of types.
    A child may have many containers and a container many children.
    '''

    def __init__(self):
        # (parent type, child type) -> parent ID -> child IDs
        self._children = defaultdict(lambda: defaultdict(set))

    def contains(self, parent_type, parent_id, child_type, child_id):
        self._children[(parent_type, child_type)][parent_id].add(child_id)

    def get_children(self, parent_type, parent_id, child_type):
        children = self._children.get((parent_type, child_type))
        if children is None:
            return []
        return sorted(children.get(parent_id, ()))

    def get_parents(self, parent_type, child_type, child_id):
        children = self._children.get((parent_type, child_type), {})
        return sorted(parent_id for parent_id, child_ids in children.items() if child_id in child_ids)

    def get_ids(self, model_type):
        ids = set()
        for (parent_type, child_type), children in self._children.items():
            if parent_type == model_type:
                ids.update(parent_id for parent_id, child_ids in children.items() if child_ids)
            if child_type == model_type:
                for child_ids in children.values():
                    ids.update(child_ids)
        return ids

    def edges(self):
        for (parent_type, child_type), children in sorted(
                self._children.items(), key=lambda item: (str(item[0][0]), str(item[0][1]))):
            for parent_id in sorted(children):
                for child_id in sorted(children[parent_id]):
                    yield parent_type, parent_id, child_type, child_id

    def __len__(self):
        return sum(len(child_ids) for children in self._children.values() for child_ids in children.values())


def query_relationships(remote, seeds, wanted, containment=None):
    '''
    Breadth-first closure from the seed objects over the relationships among the wanted types.
    seeds maps each model type to the IDs to start from. No object is queried twice.
    '''
    if containment is None:
        containment = Containment()

    to_query = {model_type: set(ids) for model_type, ids in seeds.items() if ids}
    queried = defaultdict(set)
    while to_query:
        next_query = defaultdict(set)
        for parent_type in sorted(to_query, key=str):
            parent_ids = to_query[parent_type]
            if parent_type in wanted:
                for child_type, relationship in CONTAINER_QUERIES.get(parent_type, ()):
                    if child_type not in wanted:
                        continue
                    for parent_id, child_id in remote.query_links(relationship, parent_ids):
                        containment.contains(parent_type, parent_id, child_type, child_id)
                        next_query[child_type].add(child_id)
            queried[parent_type].update(parent_ids)
        to_query = {}
        for child_type, child_ids in next_query.items():
            child_ids = child_ids - queried[child_type]
            if child_ids:
                to_query[child_type] = child_ids
    return containment


def types_leading_to(from_types, to_type=ModelType.IMAGE):
    '''
    The types that lie on some chain of container queries from one of the given types to to_type.
    '''
    reachable = set(from_types)
    pending = list(from_types)
    while pending:
        for child_type, _ in CONTAINER_QUERIES.get(pending.pop(), ()):
            if child_type not in reachable:
                reachable.add(child_type)
                pending.append(child_type)

    leading = {to_type}
    changed = True
    while changed:
        changed = False
        for container_type, queries in CONTAINER_QUERIES.items():
            if container_type not in leading and any(child in leading for child, _ in queries):
                leading.add(container_type)
                changed = True

    return reachable & leading


def scan_containment(local_paths, wanted, containment=None):
    '''
    Rebuild containment from the <Type>/<id>/<ChildType>/<childId> links already made on disk.
    '''
    if containment is None:
        containment = Containment()

    for parent_type in sorted(wanted, key=str):
        type_directory = local_paths.base / str(parent_type)
        if not type_directory.is_dir():
            continue
        for object_directory in sorted(type_directory.iterdir()):
            if not object_directory.name.isdigit() or not object_directory.is_dir():
                continue
            parent_id = int(object_directory.name)
            for child_type in sorted(wanted, key=str):
                child_directory = object_directory / str(child_type)
                if not child_directory.is_dir() or child_directory.is_symlink():
                    continue
                for child_link in child_directory.iterdir():
                    if child_link.is_symlink() and child_link.name.isdigit():
                        containment.contains(parent_type, parent_id, child_type, int(child_link.name))
    return containment
