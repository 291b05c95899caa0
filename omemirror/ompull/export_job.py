'''
Class for each export run
Stores the selected options and reports progress to the console and the log file
'''

import threading
from datetime import datetime
from pathlib import Path

from omemirror.ompull.model_types import ModelType

FILE_TYPES = ('binary', 'companion', 'tiff', 'ome-tiff', 'ome-xml-parts', 'ome-xml-whole')
OBJECT_TYPES = ('project', 'dataset', 'folder', 'experiment', 'instrument', 'image', 'screen',
                'plate', 'annotation', 'roi')
LINK_TYPES = ('fileset', 'image')

DEFAULT_OBJECT_TYPES = ('image', 'annotation', 'roi')


def get_formatted_datetime():
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def parse_choices(value, choices, option):
    # comma-separated option values, 'none' for the empty selection
    if value is None:
        return set()
    if isinstance(value, str):
        value = value.split(',')
    selected = set(v.strip().lower() for v in value if v.strip())
    if 'none' in selected:
        if len(selected) > 1:
            raise ValueError('{}: none cannot be combined with other values'.format(option))
        return set()
    unknown = selected - set(choices)
    if unknown:
        raise ValueError('{}: unknown value(s) {}, choose from {}'.format(
            option, ', '.join(sorted(unknown)), ', '.join(choices)))
    return selected


class ExportJob:
    def __init__(self, args_namespace):
        # args is a Namespace (argparse)

        # convert to dict in order to use the get method (returns None if not present in dict)
        args = vars(args_namespace)

        self.base_dir = Path(args.get('base') or '.')
        self.file_types = parse_choices(args.get('file_types'), FILE_TYPES, 'file types')
        object_types = args.get('object_types')
        if object_types is None:
            object_types = DEFAULT_OBJECT_TYPES
        self.object_types = set(
            ModelType.from_name(name) for name in parse_choices(object_types, OBJECT_TYPES, 'object types'))
        link_types = args.get('link_types')
        if link_types is None:
            link_types = LINK_TYPES
        self.link_types = parse_choices(link_types, LINK_TYPES, 'link types')
        self.all_fileset = bool(args.get('all_fileset'))
        self.threads = args.get('threads') or 1
        if self.threads < 1:
            raise ValueError('threads must be at least 1')

        self.num_skipped = 0
        self._lock = threading.Lock()

    def wants(self, file_type):
        return file_type in self.file_types

    def get_log_fname(self):
        name = self.base_dir.resolve().name or 'root'
        return '_'.join(('export_log', name)) + '.txt'

    def send_msg(self, msg):
        logfile = self.get_log_fname()

        # workers share the console and the log file
        with self._lock:
            print(msg)
            with open(logfile, 'a') as f:
                f.write(msg + '\n')

    def report_skip(self, model_type, object_id, err):
        with self._lock:
            self.num_skipped += 1
        self.send_msg('{} Error: {}, skipping. Object: {}:{}'.format(
            get_formatted_datetime(), err, model_type, object_id))

    def report_success(self, model_type, object_id):
        self.send_msg('{} export succeeded for {}:{}'.format(
            get_formatted_datetime(), model_type, object_id))
