from __future__ import annotations

import re


RELATIVE_MOUNT_SOURCE_PATTERN = re.compile(r"^\.:")
RELATIVE_PATH_PATTERN = re.compile(r"^\.[/\\]")


def expand_relative_volume_path(path: str, cwd: str) -> str:
    """Rewrite a leading ``.`` in a mount spec to the working directory.

    ``docker run --volume`` does not expand relative host paths itself.
    """
    if RELATIVE_MOUNT_SOURCE_PATTERN.match(path):
        return f"{cwd}{path[1:]}"
    if RELATIVE_PATH_PATTERN.match(path):
        return f"{cwd}/{path[2:]}"
    return path
