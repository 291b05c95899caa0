'''
Assemble the standalone XML documents of an image and its ROIs and annotations into one OME-XML document
'''

import os
import xml.etree.ElementTree as ET
from functools import partial

from tqdm import tqdm

from omemirror.ompull.export_job import get_formatted_datetime
from omemirror.ompull.model_types import ModelType
from omemirror.ompull.truncating_stream import TruncatingWriter
from omemirror.ompull.xml_generator import OME_NS, q

EXPORT_NAME = 'image.ome.xml'

STRUCTURED_ANNOTATIONS_OPEN = b'<StructuredAnnotations>'
STRUCTURED_ANNOTATIONS_CLOSE = b'</StructuredAnnotations>'


def serialize(element, out):
    ET.ElementTree(element).write(out, encoding='UTF-8', xml_declaration=True)


def measure_document():
    '''
    From a probe document, the bytes that open and close an OME document
    around its child elements as serialized here.
    '''
    ET.register_namespace('', OME_NS)
    root = ET.Element(q('OME'))
    ET.SubElement(root, q('Image'))
    text = ET.tostring(root, encoding='UTF-8', xml_declaration=True)

    declaration_length = text.index(b'>') + 1
    header_length = text.index(b'>', declaration_length) + 1 - declaration_length
    footer_length = len(text) - text.rindex(b'<')
    return text[:declaration_length + header_length], text[len(text) - footer_length:]


def local_name(element):
    return element.tag.rpartition('}')[2]


def insert_reference(tag, before, element, lsid):
    # a reference precedes the first child with one of the given names
    reference = ET.Element(q(tag), {'ID': lsid})
    for index, child in enumerate(element):
        if local_name(child) in before:
            element.insert(index, reference)
            return
    element.append(reference)


# (referrer type, referenced type) -> attach a reference element to the referrer's element
REFERENCE_ATTACHERS = {
    (ModelType.IMAGE, ModelType.ROI): partial(insert_reference, 'ROIRef', ('MicrobeamManipulationRef', 'AnnotationRef')),
    (ModelType.IMAGE, ModelType.ANNOTATION): partial(insert_reference, 'AnnotationRef', ()),
    (ModelType.ROI, ModelType.ANNOTATION): partial(insert_reference, 'AnnotationRef', ('Description',)),
    (ModelType.ANNOTATION, ModelType.ANNOTATION): partial(
        insert_reference, 'AnnotationRef', ('Value', 'BinaryFile')),
}


class XmlAssembler:
    '''
    Writes the document header on construction and the footer on close; in between,
    write_image adds an image with everything that it references.
    '''

    _shape = None

    def __init__(self, local_paths, containment, out, job):
        if XmlAssembler._shape is None:
            XmlAssembler._shape = measure_document()
        self.header, self.footer = XmlAssembler._shape

        self.local_paths = local_paths
        self.containment = containment
        self.out = out
        self.job = job
        self.lsids = {}
        self.missing = set()

        self.out.write(self.header)

    def read_element(self, model_type, object_id):
        return ET.parse(str(self.local_paths.get_metadata_file(model_type, object_id))).getroot()

    def get_lsid(self, model_type, object_id):
        key = (model_type, object_id)
        if key not in self.lsids:
            self.lsids[key] = self.read_element(model_type, object_id).get('ID')
        return self.lsids[key]

    def available(self, model_type, object_ids, referrer):
        # those of the objects whose documents exist
        found = []
        for object_id in object_ids:
            if self.local_paths.get_metadata_file(model_type, object_id).exists():
                found.append(object_id)
            elif (model_type, object_id) not in self.missing:
                self.missing.add((model_type, object_id))
                self.job.send_msg('{} No XML for {}:{} referenced from {}, skipping reference'.format(
                    get_formatted_datetime(), model_type, object_id, referrer))
        return found

    def add_references(self, element, model_type, object_id, child_type, child_ids):
        attach = REFERENCE_ATTACHERS[(model_type, child_type)]
        for child_id in child_ids:
            attach(element, self.get_lsid(child_type, child_id))

    def write_element(self, element):
        # the wrapping OME element keeps namespace declarations off the fragment
        wrapper = ET.Element(q('OME'))
        wrapper.append(element)
        truncater = TruncatingWriter(self.out, len(self.header), len(self.footer))
        serialize(wrapper, truncater)
        truncater.finish()

    def get_annotations(self, referrers):
        '''
        The annotations on the given objects, including those on annotations, with each one's own annotations.
        '''
        annotations = {}
        pending = []
        for model_type, object_id in referrers:
            children = self.containment.get_children(model_type, object_id, ModelType.ANNOTATION)
            pending.extend(self.available(ModelType.ANNOTATION, children, '{}:{}'.format(model_type, object_id)))
        pending = sorted(set(pending))
        while pending:
            annotation_id = pending.pop(0)
            if annotation_id in annotations:
                continue
            children = self.containment.get_children(ModelType.ANNOTATION, annotation_id, ModelType.ANNOTATION)
            children = self.available(ModelType.ANNOTATION, children, '{}:{}'.format(
                ModelType.ANNOTATION, annotation_id))
            annotations[annotation_id] = children
            pending.extend(child for child in children if child not in annotations)
        return annotations

    def write_image(self, image_id):
        # the image's own document must exist
        image = self.read_element(ModelType.IMAGE, image_id)
        referrer = '{}:{}'.format(ModelType.IMAGE, image_id)

        roi_ids = self.containment.get_children(ModelType.IMAGE, image_id, ModelType.ROI)
        roi_ids = self.available(ModelType.ROI, roi_ids, referrer)
        image_annotation_ids = self.containment.get_children(ModelType.IMAGE, image_id, ModelType.ANNOTATION)
        image_annotation_ids = self.available(ModelType.ANNOTATION, image_annotation_ids, referrer)

        # ROI references precede annotation references
        self.add_references(image, ModelType.IMAGE, image_id, ModelType.ROI, roi_ids)
        self.add_references(image, ModelType.IMAGE, image_id, ModelType.ANNOTATION, image_annotation_ids)
        self.write_element(image)

        annotations = self.get_annotations(
            [(ModelType.IMAGE, image_id)] + [(ModelType.ROI, roi_id) for roi_id in roi_ids])
        if annotations:
            self.out.write(STRUCTURED_ANNOTATIONS_OPEN)
            for annotation_id in sorted(annotations):
                annotation = self.read_element(ModelType.ANNOTATION, annotation_id)
                self.add_references(annotation, ModelType.ANNOTATION, annotation_id,
                                    ModelType.ANNOTATION, annotations[annotation_id])
                self.write_element(annotation)
            self.out.write(STRUCTURED_ANNOTATIONS_CLOSE)

        for roi_id in roi_ids:
            roi = self.read_element(ModelType.ROI, roi_id)
            roi_annotation_ids = self.containment.get_children(ModelType.ROI, roi_id, ModelType.ANNOTATION)
            roi_annotation_ids = [annotation_id for annotation_id in roi_annotation_ids
                                  if annotation_id in annotations]
            self.add_references(roi, ModelType.ROI, roi_id, ModelType.ANNOTATION, roi_annotation_ids)
            self.write_element(roi)

    def close(self):
        self.out.write(self.footer)


def assemble_images(local_paths, containment, job, image_ids):
    '''
    Write the whole OME-XML document of each image that lacks one. Returns the number written.
    '''
    written = 0
    for image_id in tqdm(sorted(image_ids), desc='OME-XML'):
        destination = local_paths.get_export_file(ModelType.IMAGE, image_id, EXPORT_NAME)
        if destination.exists():
            continue
        if not local_paths.get_metadata_file(ModelType.IMAGE, image_id).exists():
            job.report_skip(ModelType.IMAGE, image_id, 'no XML for image to assemble')
            continue

        destination.parent.mkdir(parents=True, exist_ok=True)
        temporary = destination.with_name(destination.name + '.tmp')
        try:
            with open(str(temporary), 'wb') as out:
                assembler = XmlAssembler(local_paths, containment, out, job)
                assembler.write_image(image_id)
                assembler.close()
        except (ET.ParseError, ValueError) as err:
            temporary.unlink()
            job.report_skip(ModelType.IMAGE, image_id, 'cannot assemble XML: {}'.format(err))
            continue
        os.replace(str(temporary), str(destination))
        job.send_msg('{} Wrote {}'.format(get_formatted_datetime(), destination))
        written += 1
    return written
