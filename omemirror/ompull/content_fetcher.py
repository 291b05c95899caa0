'''
Resumable download of original file content by byte range
'''

from pathlib import Path

from tqdm import tqdm

from omemirror.ompull.export_job import get_formatted_datetime
from omemirror.ompull.remote_resources import AccessDenied

# the most bytes to request at once
BATCH_SIZE = 16 * 1024 * 1024


def fetch_file(remote, file_id, destination, job, batch_size=BATCH_SIZE):
    '''
    Download the original file to the destination, continuing from what is already there.
    Returns False if the server refused access to the file.
    Local I/O failures propagate.
    '''
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    try:
        remote_size = remote.get_file_size(file_id)
        local_size = destination.stat().st_size if destination.exists() else 0

        if local_size == remote_size:
            # an empty original file still needs its place on disk
            destination.touch()
            return True
        if local_size > remote_size:
            job.send_msg('{} Local copy of original file {} is longer than on the server, downloading again'.format(
                get_formatted_datetime(), file_id))
            destination.unlink()
            local_size = 0

        with open(str(destination), 'ab') as f, tqdm(total=remote_size, initial=local_size,
                                                     unit='B', unit_scale=True,
                                                     desc='OriginalFile:{}'.format(file_id)) as progress:
            offset = local_size
            while offset < remote_size:
                length = min(batch_size, remote_size - offset)
                data = remote.read_file(file_id, offset, length)
                if not data:
                    raise ConnectionError('no content for original file {} at offset {}'.format(file_id, offset))
                f.write(data[:length])
                offset += min(len(data), length)
                progress.update(min(len(data), length))
    except AccessDenied as err:
        # a download policy, no use in retrying
        job.send_msg('{} Access to original file {} denied ({}), skipping file'.format(
            get_formatted_datetime(), file_id, err))
        return False

    return True
