'''
Write each model object as a standalone OME-XML document
'''

import os
import xml.etree.ElementTree as ET

from tqdm import tqdm

from omemirror.ompull.model_types import ModelType
from omemirror.ompull.remote_resources import AccessDenied, batches

OME_NS = 'http://www.openmicroscopy.org/Schemas/OME/2016-06'

ANNOTATION_KINDS = (
    'BooleanAnnotation',
    'CommentAnnotation',
    'DoubleAnnotation',
    'LongAnnotation',
    'MapAnnotation',
    'TagAnnotation',
    'TermAnnotation',
    'TimestampAnnotation',
    'XMLAnnotation',
)

# element names of the other model types
ELEMENT_NAMES = {
    ModelType.PROJECT: 'Project',
    ModelType.DATASET: 'Dataset',
    ModelType.FOLDER: 'Folder',
    ModelType.EXPERIMENT: 'Experiment',
    ModelType.INSTRUMENT: 'Instrument',
    ModelType.IMAGE: 'Image',
    ModelType.SCREEN: 'Screen',
    ModelType.PLATE: 'Plate',
    ModelType.ROI: 'ROI',
}

# these have no Name attribute
UNNAMED = ('Experiment', 'Instrument')


def q(tag):
    return '{%s}%s' % (OME_NS, tag)


def write_document(element, destination):
    # write via a temporary file so that a document on disk is always complete
    ET.register_namespace('', OME_NS)
    destination.parent.mkdir(parents=True, exist_ok=True)
    temporary = destination.with_name(destination.name + '.tmp')
    ET.ElementTree(element).write(str(temporary), encoding='UTF-8', xml_declaration=True)
    os.replace(str(temporary), str(destination))


def add_description(element, obj):
    if obj.get('description'):
        ET.SubElement(element, q('Description')).text = obj['description']


class XmlGenerator:
    def __init__(self, remote, local_paths, job):
        self.remote = remote
        self.local_paths = local_paths
        self.job = job
        self.lsid_format = remote.get_lsid_format()

        self.builders = {
            ModelType.IMAGE: self.image_element,
            ModelType.ROI: self.roi_element,
            ModelType.ANNOTATION: self.annotation_element,
        }

    def get_lsid(self, type_name, object_id, update_id):
        return self.lsid_format.format(type_name, object_id, update_id)

    def container_element(self, model_type, obj):
        name = ELEMENT_NAMES[model_type]
        element = ET.Element(q(name), {'ID': self.get_lsid(name, obj['id'], obj['update_id'])})
        if name not in UNNAMED and obj.get('name') is not None:
            element.set('Name', obj['name'])
        if model_type == ModelType.EXPERIMENT and obj.get('type'):
            element.set('Type', obj['type'])
        add_description(element, obj)
        return element

    def image_element(self, model_type, obj):
        element = ET.Element(q('Image'), {'ID': self.get_lsid('Image', obj['id'], obj['update_id'])})
        if obj.get('name') is not None:
            element.set('Name', obj['name'])
        if obj.get('acquisition_date'):
            ET.SubElement(element, q('AcquisitionDate')).text = obj['acquisition_date']
        add_description(element, obj)

        pixels = obj['pixels']
        pixels_element = ET.SubElement(element, q('Pixels'), {
            'ID': self.get_lsid('Pixels', pixels['id'], pixels['update_id']),
            'DimensionOrder': pixels['dimension_order'],
            'Type': pixels['type'],
            'SizeX': str(pixels['size_x']),
            'SizeY': str(pixels['size_y']),
            'SizeZ': str(pixels['size_z']),
            'SizeC': str(pixels['size_c']),
            'SizeT': str(pixels['size_t']),
        })
        channel_names = pixels.get('channel_names') or []
        for channel in range(pixels['size_c']):
            channel_element = ET.SubElement(pixels_element, q('Channel'), {
                'ID': 'Channel:{}:{}'.format(pixels['id'], channel),
                'SamplesPerPixel': '1',
            })
            if channel < len(channel_names) and channel_names[channel]:
                channel_element.set('Name', channel_names[channel])
        ET.SubElement(pixels_element, q('MetadataOnly'))
        return element

    def roi_element(self, model_type, obj):
        element = ET.Element(q('ROI'), {'ID': self.get_lsid('Roi', obj['id'], obj['update_id'])})
        if obj.get('name') is not None:
            element.set('Name', obj['name'])
        union = ET.SubElement(element, q('Union'))
        for shape in obj.get('shapes', []):
            attributes = {'ID': self.get_lsid(shape['kind'], shape['id'], shape['update_id'])}
            attributes.update((key, str(value)) for key, value in shape.get('attributes', {}).items())
            ET.SubElement(union, q(shape['kind']), attributes)
        add_description(element, obj)
        return element

    def annotation_element(self, model_type, obj):
        kind = obj['kind']
        if kind not in ANNOTATION_KINDS:
            raise ValueError('unsupported annotation kind: {}'.format(kind))
        element = ET.Element(q(kind), {'ID': self.get_lsid(kind, obj['id'], obj['update_id'])})
        if obj.get('namespace'):
            element.set('Namespace', obj['namespace'])
        add_description(element, obj)

        value = obj.get('value')
        value_element = ET.SubElement(element, q('Value'))
        if kind == 'MapAnnotation':
            for key, entry in value or []:
                ET.SubElement(value_element, q('M'), {'K': key}).text = entry
        elif kind == 'BooleanAnnotation':
            value_element.text = 'true' if value else 'false'
        elif value is not None:
            value_element.text = str(value)
        return element

    def write_objects(self, model_type, ids):
        '''
        Write the fragment of each given object that does not yet have one.
        Returns the number written.
        '''
        ids = [object_id for object_id in sorted(ids)
               if not self.local_paths.get_metadata_file(model_type, object_id).exists()]
        build = self.builders.get(model_type, self.container_element)

        written = 0
        with tqdm(total=len(ids), desc='XML {}'.format(model_type)) as progress:
            for id_batch in batches(ids):
                try:
                    objects = self.remote.get_objects(model_type, id_batch)
                except (ConnectionError, AccessDenied) as err:
                    for object_id in id_batch:
                        self.job.report_skip(model_type, object_id, err)
                    progress.update(len(id_batch))
                    continue

                found = set()
                for obj in objects:
                    found.add(obj['id'])
                    try:
                        element = build(model_type, obj)
                    except (KeyError, ValueError) as err:
                        self.job.report_skip(model_type, obj['id'], 'cannot write XML: {!r}'.format(err))
                        continue
                    write_document(element, self.local_paths.get_metadata_file(model_type, obj['id']))
                    self.job.report_success(model_type, obj['id'])
                    written += 1
                for object_id in sorted(set(id_batch) - found):
                    self.job.report_skip(model_type, object_id, 'not found on server')
                progress.update(len(id_batch))
        return written
