'''
The principal OMERO model types that are managed for download
'''

from enum import Enum


class ModelType(Enum):
    # OME model top-level entities
    EXPERIMENT = 'Experiment'
    PROJECT = 'Project'
    DATASET = 'Dataset'
    FOLDER = 'Folder'
    SCREEN = 'Screen'
    PLATE = 'Plate'
    IMAGE = 'Image'
    INSTRUMENT = 'Instrument'
    ANNOTATION = 'Annotation'
    ROI = 'Roi'
    # additional OMERO top-level entities
    FILESET = 'Fileset'

    def __str__(self):
        return self.value

    @classmethod
    def from_name(cls, name):
        try:
            return _NAMES[name.lower()]
        except KeyError:
            raise ValueError('unknown model type: {}'.format(name))


# names as given on the command line or returned by the server
_NAMES = {
    'experiment': ModelType.EXPERIMENT,
    'project': ModelType.PROJECT,
    'dataset': ModelType.DATASET,
    'folder': ModelType.FOLDER,
    'screen': ModelType.SCREEN,
    'plate': ModelType.PLATE,
    'image': ModelType.IMAGE,
    'instrument': ModelType.INSTRUMENT,
    'annotation': ModelType.ANNOTATION,
    'roi': ModelType.ROI,
    'fileset': ModelType.FILESET,
}


def _check_names():
    missing = set(ModelType) - set(_NAMES.values())
    if missing:
        raise RuntimeError('model types without a name: {}'.format(sorted(str(m) for m in missing)))


_check_names()
