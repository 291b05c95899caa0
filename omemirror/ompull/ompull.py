'''
Command line program to mirror images, their files and their metadata from an OMERO server
'''

import argparse
import configparser
import os
import re
import sys
from collections import defaultdict
from multiprocessing.dummy import Pool as ThreadPool

from tqdm import tqdm

import omemirror
from omemirror.ompull.content_fetcher import fetch_file
from omemirror.ompull.export_job import (FILE_TYPES, LINK_TYPES, OBJECT_TYPES, ExportJob,
                                         get_formatted_datetime)
from omemirror.ompull.file_io import TruncatedFileError
from omemirror.ompull.file_mapper import FileMapper
from omemirror.ompull.link_maker import LinkMaker
from omemirror.ompull.local_paths import LocalPaths
from omemirror.ompull.local_pixels import export_pixels
from omemirror.ompull.model_types import ModelType
from omemirror.ompull.relationships import query_relationships, scan_containment, types_leading_to
from omemirror.ompull.remote_resources import AccessDenied, OmeroRemote
from omemirror.ompull.xml_assembler import assemble_images
from omemirror.ompull.xml_generator import XmlGenerator

DEFAULT_URL = 'https://localhost'

TARGET_PATTERN = re.compile(r'^[A-Z][A-Za-z]*:\d+(,\d+)*$')

# failures that skip the one object and let the run continue
ITEM_ERRORS = (ConnectionError, AccessDenied, TruncatedFileError, ValueError)

# the types that a whole image document draws upon
WHOLE_XML_TYPES = {ModelType.IMAGE, ModelType.ROI, ModelType.ANNOTATION}


def collect_input_args(targets, config_file=None, token=None, url=DEFAULT_URL, targets_file=None, base='.',
                       file_types=None, object_types=None, link_types=None, all_fileset=False, threads=1,
                       print_config=False, check_version=False):
    result = argparse.Namespace(
        targets=targets,
        config_file=config_file,
        token=token,
        url=url,
        targets_file=targets_file,
        base=base,
        file_types=file_types,
        object_types=object_types,
        link_types=link_types,
        all_fileset=all_fileset,
        threads=threads,
        print_config=print_config,
        check_version=check_version,
    )
    return result


def collect_args():
    parser = argparse.ArgumentParser(description='Mirror images, files and metadata from an OMERO server')
    parser.add_argument('--config_file', type=str,
                        help='User config file for the server')
    parser.add_argument(
        '--token', type=str, help='User token for the server (not used if config file specified)')
    parser.add_argument(
        '--url', default=DEFAULT_URL, help='URL to the server (not used if config file specified)')

    parser.add_argument('targets', nargs='*',
                        help='Objects to export as Type:id[,id...], e.g. Project:1 or Image:5,6')
    parser.add_argument('--targets_file', type=str,
                        help='File listing further targets, one per line')

    parser.add_argument('-d', '--base', type=str, default='.',
                        help='Base directory for the mirror')
    parser.add_argument('-f', '--file_types', type=str,
                        help='File types to write, comma-separated from: {} (or none)'.format(', '.join(FILE_TYPES)))
    parser.add_argument('-x', '--object_types', type=str,
                        help='Object types for which to write XML, comma-separated from: {} '
                             '(default image,annotation,roi)'.format(', '.join(OBJECT_TYPES)))
    parser.add_argument('-l', '--link_types', type=str,
                        help='Links to create, comma-separated from: {} (default all)'.format(', '.join(LINK_TYPES)))
    parser.add_argument('-a', '--all_fileset', action='store_true',
                        help='Also export the other images of each fileset')
    parser.add_argument('--threads', default=1, type=int,
                        help='Number of threads for exporting image pixels.')

    parser.add_argument('--print_config', action='store_true',
                        help='Prints the server configuration and quits')
    parser.add_argument('--check_version', action='store_true',
                        help='Tells if a newer omemirror is available')

    return parser.parse_args()


def get_server_config(config_file=None, token=None, url=DEFAULT_URL):
    if config_file:
        config = configparser.ConfigParser()
        config.read(config_file)
        token = config['Default']['token']
        protocol = config['Default']['protocol']
        host = config['Default']['host']
        url = ''.join((protocol, '://', host))
    elif token is None:
        token = os.environ.get('OMERO_TOKEN')
    return token, url


def parse_targets(target_strings):
    '''
    model type -> IDs from arguments like Image:5,6
    '''
    targets = defaultdict(set)
    for target in target_strings:
        target = target.strip()
        if not TARGET_PATTERN.match(target):
            raise ValueError('Target must be of the form Type:id[,id...]: {}'.format(target))
        type_name, ids = target.split(':')
        targets[ModelType.from_name(type_name)].update(int(i) for i in ids.split(','))
    return dict(targets)


def read_targets_file(targets_file):
    with open(targets_file) as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]


def validate_args(result):
    # get tokens from config file if set as an option
    result.token, result.url = get_server_config(result.config_file, result.token, result.url)
    if result.token is None:
        error_msg = 'Need token or config file'
        print(error_msg)
        raise ValueError(error_msg)

    target_strings = list(result.targets or [])
    if result.targets_file:
        target_strings.extend(read_targets_file(result.targets_file))
    result.targets = parse_targets(target_strings)
    if not result.targets and not result.print_config:
        error_msg = 'Need at least one target'
        print(error_msg)
        raise ValueError(error_msg)
    if ModelType.FILESET in result.targets:
        error_msg = 'Filesets are exported through their images'
        print(error_msg)
        raise ValueError(error_msg)

    job = ExportJob(result)
    rmt = OmeroRemote(result.url, result.token)

    return result, rmt, job


def get_wanted_types(job, targets):
    wanted = set(job.object_types) | set(targets) | {ModelType.IMAGE}
    wanted |= types_leading_to(set(targets))
    if job.wants('ome-xml-whole'):
        wanted |= WHOLE_XML_TYPES
    return wanted


def fetch_files(rmt, job, mapper):
    '''
    Fetch the wanted original files. Returns the files fetched and the images with a failed file.
    '''
    fetched = set()
    failed_images = set()
    wanted_files = mapper.get_wanted_files(binary=job.wants('binary'), companion=job.wants('companion'))
    for file_id in tqdm(sorted(wanted_files), desc='Original files'):
        try:
            if fetch_file(rmt, file_id, mapper.get_repository_file(file_id), job):
                fetched.add(file_id)
        except ITEM_ERRORS as err:
            for image_id in sorted(wanted_files[file_id]):
                job.report_skip(ModelType.IMAGE, image_id, 'original file {} failed: {}'.format(file_id, err))
            failed_images |= wanted_files[file_id]
    return fetched, failed_images


def export_images(rmt, job, local_paths, image_ids):
    '''
    Export the pixels of each image, in parallel across images. Returns the images that failed.
    '''
    def export_image(image_id):
        try:
            export_pixels(rmt, local_paths, job, image_id, job.file_types)
        except ITEM_ERRORS as err:
            job.report_skip(ModelType.IMAGE, image_id, 'pixels export failed: {}'.format(err))
            return image_id
        return None

    with ThreadPool(job.threads) as pool:
        results = pool.map(export_image, sorted(image_ids))
    return set(image_id for image_id in results if image_id is not None)


def write_xml_parts(rmt, job, local_paths, containment, targets, image_ids):
    xml_types = set(job.object_types)
    if job.wants('ome-xml-whole'):
        xml_types |= WHOLE_XML_TYPES

    generator = XmlGenerator(rmt, local_paths, job)
    for model_type in sorted(xml_types, key=str):
        if model_type == ModelType.IMAGE:
            ids = set(image_ids)
        else:
            ids = containment.get_ids(model_type) | targets.get(model_type, set())
        if ids:
            generator.write_objects(model_type, ids)


def make_links(job, local_paths, mapper, containment, image_ids, fetched):
    link_maker = LinkMaker(local_paths)
    for file_id in fetched:
        link_maker.note_repository_file(file_id, mapper.get_repository_file(file_id))

    filesets = defaultdict(set)
    image_files = {}
    for image_id in sorted(image_ids):
        file_ids = set()
        if job.wants('binary'):
            file_ids |= mapper.get_binary_file_ids(image_id)
        if job.wants('companion'):
            file_ids |= mapper.get_companion_file_ids(image_id)
        file_ids &= fetched
        image_files[image_id] = file_ids
        for file_id in file_ids:
            link_maker.note_model_object_file(ModelType.IMAGE, image_id, file_id,
                                              mapper.get_image_file(image_id, file_id))

        fileset_id = mapper.get_fileset_id(image_id)
        if fileset_id is not None:
            filesets[fileset_id].add(image_id)
            for file_id in file_ids & mapper.get_binary_file_ids(image_id):
                link_maker.note_model_object_file(ModelType.FILESET, fileset_id, file_id,
                                                  mapper.get_fileset_file(fileset_id, file_id))

    count = 0
    if 'fileset' in job.link_types:
        for fileset_id, fileset_images in sorted(filesets.items()):
            fileset_files = set()
            for image_id in fileset_images:
                fileset_files |= image_files[image_id] & mapper.get_binary_file_ids(image_id)
            count += link_maker.link_repository_files(ModelType.FILESET, fileset_id, fileset_files)
            for image_id in sorted(fileset_images):
                count += link_maker.link_model_objects(ModelType.FILESET, fileset_id, ModelType.IMAGE, image_id)

    if 'image' in job.link_types:
        for image_id in sorted(image_ids):
            fileset_id = mapper.get_fileset_id(image_id)
            if 'fileset' in job.link_types and fileset_id is not None:
                # binary files reach the repository through the fileset's links
                count += link_maker.link_model_object_files(ModelType.IMAGE, image_id, ModelType.FILESET, fileset_id,
                                                            image_files[image_id])
            count += link_maker.link_repository_files(ModelType.IMAGE, image_id, image_files[image_id])

    count += link_maker.link_containment(containment)
    return count


def run_export(rmt, job, targets):
    '''
    The whole export, step by step. Failures of single objects are reported and skipped.
    '''
    local_paths = LocalPaths(job.base_dir)
    job.send_msg('{} Starting export of {} to {}'.format(
        get_formatted_datetime(), ', '.join('{}:{}'.format(t, sorted(ids)) for t, ids in sorted(
            targets.items(), key=lambda item: str(item[0]))), job.base_dir))

    # relationships among the wanted objects
    wanted = get_wanted_types(job, targets)
    containment = query_relationships(rmt, targets, wanted)
    image_ids = containment.get_ids(ModelType.IMAGE) | targets.get(ModelType.IMAGE, set())
    job.send_msg('{} Found {} images among {} relationships'.format(
        get_formatted_datetime(), len(image_ids), len(containment)))

    mapper = FileMapper(rmt, local_paths, image_ids)
    if job.all_fileset:
        added = mapper.complete_filesets()
        if added:
            job.send_msg('Adding {} images to complete their filesets'.format(len(added)))
            image_ids |= added

    fetched, failed_images = fetch_files(rmt, job, mapper)
    failed_images |= export_images(rmt, job, local_paths, image_ids)
    for image_id in sorted(image_ids - failed_images):
        job.report_success(ModelType.IMAGE, image_id)

    if job.wants('ome-xml-parts') or job.wants('ome-xml-whole'):
        write_xml_parts(rmt, job, local_paths, containment, targets, image_ids)

    count = make_links(job, local_paths, mapper, containment, image_ids, fetched)
    job.send_msg('{} Made {} links'.format(get_formatted_datetime(), count))

    if job.wants('ome-xml-whole'):
        # the links on disk tell what each image references
        assemble_images(local_paths, scan_containment(local_paths, WHOLE_XML_TYPES), job, image_ids)

    job.send_msg('{} Export complete, {} objects skipped'.format(get_formatted_datetime(), job.num_skipped))


def main():
    args = collect_args()

    if args.check_version:
        omemirror.check_version()

    try:
        result, rmt, job = validate_args(args)
    except ValueError as err:
        print('Invalid arguments: {}'.format(err))
        sys.exit(2)
    except (ConnectionError, AccessDenied) as err:
        print('Cannot connect to the server: {}'.format(err))
        sys.exit(3)

    if result.print_config:
        print(rmt)
        return

    try:
        run_export(rmt, job, result.targets)
    except (AccessDenied, OSError) as err:
        # includes ConnectionError for failures beyond a single object
        job.send_msg('{} Export failed: {}'.format(get_formatted_datetime(), err))
        sys.exit(3)

    if job.num_skipped:
        sys.exit(1)


if __name__ == '__main__':
    main()
