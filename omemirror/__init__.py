"""
Python 3 program to mirror images, files and metadata from an OMERO server
"""


version = "0.3.1"


def check_version():
    """
    Tells you if you have an old version of omemirror.
    """
    import requests

    r = requests.get("https://pypi.org/pypi/omemirror/json").json()
    r = r["info"]["version"]
    if r != version:
        print(
            "A newer version of omemirror is available. "
            + "'pip install -U omemirror' to update."
        )
    return r
