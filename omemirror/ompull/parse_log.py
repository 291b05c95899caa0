import argparse
import os

from tqdm import tqdm


def get_nonexistant_path(fname_path):
    """
    Get the path to a filename which does not exist by incrementing path.

    Examples
    --------
    >>> get_nonexistant_path('/etc/issue')
    '/etc/issue-1'
    >>> get_nonexistant_path('whatever/1337bla.py')
    'whatever/1337bla.py'
    """
    if not os.path.exists(fname_path):
        return fname_path
    filename, file_extension = os.path.splitext(fname_path)
    i = 1
    new_fname = "{}-{}{}".format(filename, i, file_extension)
    while os.path.exists(new_fname):
        i += 1
        new_fname = "{}-{}{}".format(filename, i, file_extension)
    return new_fname


def parse_log(logfile, outfile):
    # parse the log file to list the objects to export again, usable as a targets file

    if os.path.isfile(outfile):
        outfile = get_nonexistant_path(outfile)

    with open(logfile) as f:
        log_lines = f.readlines()

    # only object failures name the object, file access refusals are not worth retrying
    pending = {}
    for line in tqdm(log_lines):
        if ', skipping' in line and ' Object: ' in line:
            pending[line.rsplit(' Object: ', 1)[1].strip()] = line
        elif 'export succeeded for ' in line:
            pending.pop(line.rsplit('export succeeded for ', 1)[1].strip(), None)
    targets = list(pending)

    with open(outfile, 'w') as fo:
        for target in targets:
            fo.write(target + '\n')

    return outfile


def main():
    parser = argparse.ArgumentParser(description='Search an export log file for objects to export again')
    parser.add_argument('--logfile', type=str,
                        default='export_log.txt', help='log file to parse')
    parser.add_argument('--outfile', type=str,
                        default='repeat_targets.txt', help='targets file to write')
    args = parser.parse_args()

    print('Parsing the log file...')
    outfile = parse_log(args.logfile, args.outfile)
    print('Parsing log file complete, targets written to {}'.format(outfile))


if __name__ == '__main__':
    main()
