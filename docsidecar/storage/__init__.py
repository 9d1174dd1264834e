"""File-backed helpers used by the CLI: the body/sidecar pair and an image directory."""

from .images import DirectoryImageStore, ImageNotFoundError
from .writer import read_pair, write_pair
